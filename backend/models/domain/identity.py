"""
Identity domain model

Read-through view of a Farcaster user. Resolved on demand per pass and
never persisted as authoritative; only denormalized onto ContentEntry.
"""
from dataclasses import dataclass, field
from typing import List, Optional, Set


@dataclass
class IdentityRecord:
    """Farcaster user (fid) with its associated wallets"""
    identity_id: int
    username: str = ""
    display_name: str = ""
    pfp_url: str = ""
    custody_address: Optional[str] = None
    verified_addresses: List[str] = field(default_factory=list)

    @property
    def wallets(self) -> Set[str]:
        """Custody + verified addresses, lower-cased"""
        addresses = set()
        if self.custody_address:
            addresses.add(self.custody_address.lower())
        for address in self.verified_addresses:
            if address:
                addresses.add(address.lower())
        return addresses

    @classmethod
    def from_neynar(cls, user: dict) -> 'IdentityRecord':
        """Build from a Neynar user object"""
        verified = (user.get('verified_addresses') or {}).get('eth_addresses') or []
        return cls(
            identity_id=int(user['fid']),
            username=user.get('username') or "",
            display_name=user.get('display_name') or user.get('username') or "",
            pfp_url=user.get('pfp_url') or "",
            custody_address=user.get('custody_address'),
            verified_addresses=list(verified),
        )


@dataclass
class OwnerWallets:
    """Resolved author of a cast plus the wallets that count as self-stakes"""
    owner_identity: int
    wallets: Set[str] = field(default_factory=set)
    identity: Optional[IdentityRecord] = None
