"""Persistent IP address allocation.

Addresses are claimed by inserting a row; the unique constraint on the
address column is what makes concurrent allocations safe, so an insert that
loses a race simply moves on to the next candidate address.
"""
from sqlalchemy import select, delete
from sqlalchemy.exc import IntegrityError
from typing import List, Optional, Union
import ipaddress
import logging

from dockyards.errors import PrefixFull, AddressNotAllocated
from dockyards.models.ip_allocation import IPAllocation

logger = logging.getLogger(__name__)

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


class IPManager:
    """Allocates unique addresses from prefixes, backed by the database."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def _allocated_in(self, network) -> set:
        async with self.session_factory() as session:
            result = await session.execute(select(IPAllocation.address))
            addresses = result.scalars().all()

        allocated = set()
        for address in addresses:
            try:
                parsed = ipaddress.ip_address(address)
            except ValueError:
                logger.warning(f"Ignoring malformed allocation {address!r}")
                continue
            if parsed.version == network.version and parsed in network:
                allocated.add(parsed)
        return allocated

    async def _claim(self, address: IPAddress, tag: Optional[str]) -> bool:
        async with self.session_factory() as session:
            session.add(IPAllocation(address=str(address), tag=tag))
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.debug(f"Address {address} was claimed concurrently")
                return False
        return True

    async def allocate(self, prefix: str, tag: Optional[str] = None) -> IPAddress:
        """Claim the lowest free address of ``prefix``, starting at its address part.

        Raises PrefixFull when no address is left.
        """
        interface = ipaddress.ip_interface(prefix)
        network = interface.network
        address = interface.ip

        allocated = await self._allocated_in(network)

        while True:
            if address not in allocated:
                if await self._claim(address, tag):
                    logger.info(f"Allocated {address} from {prefix} (tag={tag})")
                    return address
            if address == network.broadcast_address:
                break
            address += 1

        raise PrefixFull()

    async def release(self, address: Union[str, IPAddress]):
        """Remove the allocation row for ``address``."""
        address = str(ipaddress.ip_address(str(address)))

        async with self.session_factory() as session:
            result = await session.execute(delete(IPAllocation).where(IPAllocation.address == address))
            await session.commit()

        if result.rowcount == 0:
            raise AddressNotAllocated()

        logger.info(f"Released {address}")

    async def find_by_tag(self, tag: str) -> List[IPAddress]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(IPAllocation.address).where(IPAllocation.tag == tag).order_by(IPAllocation.created_at)
            )
            return [ipaddress.ip_address(address) for address in result.scalars().all()]

    async def release_by_tag(self, tag: str) -> int:
        """Release every allocation carrying ``tag``; returns how many were removed."""
        async with self.session_factory() as session:
            result = await session.execute(delete(IPAllocation).where(IPAllocation.tag == tag))
            await session.commit()

        if result.rowcount:
            logger.info(f"Released {result.rowcount} address(es) tagged {tag}")
        return result.rowcount
