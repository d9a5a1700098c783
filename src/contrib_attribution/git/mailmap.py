"""Author identity normalization through the repository mailmap."""

import logging
import re
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Set, Tuple

from ..core.constants import MAILMAP_BATCH_SIZE
from ..exceptions import GitRepositoryError
from .models import AuthorIdentity, identity_key, normalize_email, normalize_name
from .repository import GitRepository


logger = logging.getLogger(__name__)

CONTACT_PATTERN = re.compile(r"^(.*?)\s*<([^<>]*)>$")

RawIdentity = Tuple[str, str]


def parse_contact(contact: str) -> RawIdentity:
    """Split ``Name <email>`` into its parts."""
    match = CONTACT_PATTERN.match(contact.strip())
    if not match:
        return normalize_name(contact), ""
    return normalize_name(match.group(1)), normalize_email(match.group(2))


class MailmapResolver:
    """Resolves raw (name, email) pairs to canonical identities.

    Every raw pair maps to exactly one canonical pair for the lifetime of the
    resolver, which corresponds to one mailmap snapshot. Identities sharing a
    canonical key accumulate the raw emails seen for them as aliases.
    """

    def __init__(self, repository: Optional[GitRepository] = None, enabled: bool = True):
        self.repository = repository
        self.enabled = enabled and repository is not None
        self._canonical: Dict[RawIdentity, RawIdentity] = {}
        self._names: Dict[str, str] = {}
        self._emails: Dict[str, str] = {}
        self._aliases: Dict[str, Set[str]] = defaultdict(set)

    def resolve_many(self, pairs: Iterable[Tuple[Optional[str], Optional[str]]]) -> None:
        """Resolve a batch of raw identities with as few git calls as possible."""
        pending: List[RawIdentity] = []
        seen: Set[RawIdentity] = set()
        for name, email in pairs:
            raw = (normalize_name(name), normalize_email(email))
            if raw in self._canonical or raw in seen:
                continue
            seen.add(raw)
            if self.enabled and raw[1]:
                pending.append(raw)
            else:
                self._record(raw, raw)

        for start in range(0, len(pending), MAILMAP_BATCH_SIZE):
            chunk = pending[start:start + MAILMAP_BATCH_SIZE]
            for raw, mapped in zip(chunk, self._lookup(chunk)):
                self._record(raw, mapped)

    def resolve(self, name: Optional[str], email: Optional[str]) -> AuthorIdentity:
        """Canonical identity for one raw pair."""
        raw = (normalize_name(name), normalize_email(email))
        self.resolve_many([raw])
        canonical = self._canonical[raw]
        return self.identity_for(identity_key(*canonical))

    def key_for(self, name: Optional[str], email: Optional[str]) -> str:
        return self.resolve(name, email).key

    def identity_for(self, key: str) -> AuthorIdentity:
        return AuthorIdentity(
            canonical_name=self._names[key],
            canonical_email=self._emails[key],
            alias_emails=frozenset(self._aliases[key]),
        )

    def identities(self) -> List[AuthorIdentity]:
        return [self.identity_for(key) for key in self._names]

    def _lookup(self, chunk: List[RawIdentity]) -> List[RawIdentity]:
        contacts = [f"{name} <{email}>" if name else f"<{email}>" for name, email in chunk]
        try:
            lines = self.repository.check_mailmap(contacts)
        except GitRepositoryError as e:
            logger.warning("Mailmap lookup failed, keeping raw identities: %s", e)
            return list(chunk)
        if len(lines) != len(chunk):
            logger.warning("Mailmap returned %d entries for %d contacts", len(lines), len(chunk))
            return list(chunk)

        mapped: List[RawIdentity] = []
        for raw, line in zip(chunk, lines):
            name, email = parse_contact(line)
            mapped.append((name or raw[0], email or raw[1]))
        return mapped

    def _record(self, raw: RawIdentity, canonical: RawIdentity) -> None:
        self._canonical[raw] = canonical
        # Canonical pairs map to themselves so re-resolution is a no-op
        self._canonical.setdefault(canonical, canonical)

        key = identity_key(*canonical)
        self._names.setdefault(key, canonical[0] or raw[0])
        self._emails.setdefault(key, canonical[1])
        if raw[1] and raw[1] != self._emails[key]:
            self._aliases[key].add(raw[1])
