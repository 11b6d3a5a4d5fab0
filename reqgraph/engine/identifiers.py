"""
Identifier Allocator - assigns and re-derives alternate keys.

Alternate keys look like ``FR-001`` (single level) or ``AUTH-FR-001``
(two level). The counters they are drawn from live in ``ProjectData`` and
only ever move forward; this class is the only code that mutates them.
"""

import logging
import re
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from reqgraph.errors import DigitOverflow, DuplicateAlternateKey, FormatIncompatible, InvalidPrefix
from reqgraph.models.definitions import PREFIX_PATTERN
from reqgraph.models.project import (
    IdConfiguration,
    IdFormat,
    NumberingStrategy,
    ProjectData,
)
from reqgraph.models.requirement import Requirement

logger = logging.getLogger("reqgraph.identifiers")

DEFAULT_PREFIX = "SPEC"

_KEY_PATTERN = re.compile(r"^(?P<head>.+)-(?P<number>\d+)$")


def parse_key(key: str) -> Optional[Tuple[str, int]]:
    """
    Split an alternate key into its prefix part and number.

    Returns:
        ``(head, number)`` e.g. ``("AUTH-FR", 7)``, or None for keys that
        do not end in a number.
    """
    match = _KEY_PATTERN.match(key)
    if not match:
        return None
    return match.group("head"), int(match.group("number"))


class IdentifierAllocator:
    """
    Allocates alternate keys under the project's ``IdConfiguration``.

    The allocator works on the ``ProjectData`` owned by a record store and on
    that store's alternate-key index (key -> internal id), which it reads to
    refuse collisions but never writes.
    """

    def __init__(self, data: ProjectData, key_index: Dict[str, UUID]):
        self.data = data
        self.key_index = key_index

    @property
    def id_config(self) -> IdConfiguration:
        return self.data.id_config

    # -- Prefixes -------------------------------------------------------------

    def validate_prefix(self, prefix: str) -> str:
        """
        Check a prefix against the prefix syntax and the project allow-list.

        Returns:
            The normalized (uppercased) prefix

        Raises:
            InvalidPrefix: If the prefix is malformed or not allowed
        """
        normalized = prefix.strip().upper()
        if not re.match(PREFIX_PATTERN, normalized):
            raise InvalidPrefix(prefix, "expected an uppercase letter followed by letters, digits or underscores")
        if self.data.restrict_prefixes and normalized not in self.data.allowed_prefixes:
            allowed = ", ".join(self.data.allowed_prefixes) or "none"
            raise InvalidPrefix(prefix, f"not in the allowed prefix list ({allowed})")
        return normalized

    def _type_prefix(self, record: Requirement) -> Optional[str]:
        for tdef in self.data.type_definitions:
            if tdef.name == record.req_type:
                return tdef.prefix
        return None

    def _feature_prefix(self, record: Requirement) -> Optional[str]:
        for feature in self.data.features:
            if feature.name == record.feature:
                return feature.prefix
        return None

    def key_head(self, record: Requirement, config: Optional[IdConfiguration] = None) -> str:
        """Build the part of the key in front of the number."""
        config = config or self.id_config
        if config.format == IdFormat.TWO_LEVEL:
            feature_segment = self._feature_prefix(record) or DEFAULT_PREFIX
            type_segment = record.prefix_override or self._type_prefix(record) or DEFAULT_PREFIX
            return f"{feature_segment}-{type_segment}"
        return (
            record.prefix_override
            or self._type_prefix(record)
            or self._feature_prefix(record)
            or DEFAULT_PREFIX
        )

    @staticmethod
    def counter_key(head: str, config: IdConfiguration) -> Optional[str]:
        """
        Name of the counter a key head draws from.

        Returns:
            None for the global counter, else the ``prefix_counters`` key
        """
        if config.numbering == NumberingStrategy.GLOBAL:
            return None
        if config.numbering == NumberingStrategy.PER_PREFIX:
            # Two-level keys count per type segment
            return head.split("-")[-1]
        return head

    # -- Counters -------------------------------------------------------------

    def _read_counter(self, key: Optional[str]) -> int:
        if key is None:
            return self.data.next_spec_number
        return self.data.prefix_counters.get(key, 1)

    def _write_counter(self, key: Optional[str], value: int) -> None:
        if key is None:
            self.data.next_spec_number = value
        else:
            self.data.prefix_counters[key] = value

    def format_key(self, head: str, number: int, digits: Optional[int] = None) -> str:
        digits = digits or self.id_config.digits
        return f"{head}-{number:0{digits}d}"

    def highest_number(self) -> int:
        """Largest number used by any assigned alternate key."""
        highest = 0
        for record in self.data.requirements:
            if not record.spec_id:
                continue
            parsed = parse_key(record.spec_id)
            if parsed:
                highest = max(highest, parsed[1])
        return highest

    def sync_counters(self) -> int:
        """
        Move every counter past the numbers already in use.

        Called when a store is loaded so that hand-edited or imported keys
        cannot be handed out a second time.

        Returns:
            Number of counters that were moved
        """
        moved = 0
        wanted: Dict[Optional[str], int] = {}
        for record in self.data.requirements:
            if not record.spec_id:
                continue
            parsed = parse_key(record.spec_id)
            if not parsed:
                continue
            head, number = parsed
            key = self.counter_key(head, self.id_config)
            wanted[key] = max(wanted.get(key, 0), number + 1)

        for key, value in wanted.items():
            if self._read_counter(key) < value:
                logger.warning(
                    "Counter %s was behind keys in use, moving %d -> %d",
                    key or "global", self._read_counter(key), value,
                )
                self._write_counter(key, value)
                moved += 1

        for user in self.data.users:
            parsed = parse_key(user.spec_id) if user.spec_id else None
            if parsed and self.data.meta_counters.get(parsed[0], 1) <= parsed[1]:
                self.data.meta_counters[parsed[0]] = parsed[1] + 1
                moved += 1
        return moved

    # -- Allocation -----------------------------------------------------------

    def peek_next(self, record: Requirement) -> str:
        """Key the record would receive, without consuming a number."""
        head = self.key_head(record)
        return self.format_key(head, self._read_counter(self.counter_key(head, self.id_config)))

    def assign(self, record: Requirement) -> str:
        """
        Give a record its alternate key.

        Records that already carry a key keep it.

        Args:
            record: The requirement to assign a key to

        Returns:
            The record's alternate key

        Raises:
            InvalidPrefix: If the record's prefix override is not allowed
            DigitOverflow: If the next number no longer fits the digit width
            DuplicateAlternateKey: If the computed key is already taken
        """
        if record.spec_id:
            return record.spec_id
        if record.prefix_override:
            record.prefix_override = self.validate_prefix(record.prefix_override)

        config = self.id_config
        head = self.key_head(record)
        counter = self.counter_key(head, config)
        number = self._read_counter(counter)
        if len(str(number)) > config.digits:
            raise DigitOverflow(config.digits, number)

        key = self.format_key(head, number)
        existing = self.key_index.get(key)
        if existing is not None and existing != record.id:
            raise DuplicateAlternateKey(key, existing, record.id)

        self._write_counter(counter, number + 1)
        record.spec_id = key
        logger.debug("Assigned %s to %s", key, record.id)
        return key

    def next_meta_id(self, prefix: str) -> str:
        """Allocate a meta identifier such as ``$USER-001``."""
        number = self.data.meta_counters.get(prefix, 1)
        self.data.meta_counters[prefix] = number + 1
        return f"{prefix}-{number:03d}"

    # -- Configuration --------------------------------------------------------

    def _check_combination(self, config: IdConfiguration) -> None:
        if config.numbering == NumberingStrategy.PER_FEATURE_TYPE and config.format != IdFormat.TWO_LEVEL:
            raise FormatIncompatible(
                "per_feature_type numbering requires the two_level format",
                id_format=config.format.value, numbering=config.numbering.value,
            )

    def _check_digits(self, digits: int) -> None:
        highest = self.highest_number()
        if len(str(highest)) > digits:
            raise DigitOverflow(digits, highest)

    def configure(
        self,
        id_format: Optional[IdFormat] = None,
        numbering: Optional[NumberingStrategy] = None,
        digits: Optional[int] = None,
    ) -> IdConfiguration:
        """
        Change the identifier configuration without touching existing keys.

        New records are keyed under the new configuration; use ``rederive``
        to rewrite the keys already assigned.

        Raises:
            DigitOverflow: If ``digits`` cannot hold a number already in use
            FormatIncompatible: For per_feature_type with the single_level format
        """
        current = self.id_config
        new_config = IdConfiguration(
            format=id_format or current.format,
            numbering=numbering or current.numbering,
            digits=digits or current.digits,
        )
        self._check_combination(new_config)
        self._check_digits(new_config.digits)

        self.data.id_config = new_config
        self.sync_counters()
        logger.info(
            "ID configuration set to format=%s numbering=%s digits=%d",
            new_config.format.value, new_config.numbering.value, new_config.digits,
        )
        return new_config

    def plan_rederive(self, new_config: IdConfiguration) -> Tuple[Dict[UUID, str], Dict[Optional[str], int]]:
        """
        Compute new keys and counters for ``new_config`` without applying them.

        Returns:
            ``(keys, counters)``: record id -> new key, counter -> next value

        Raises:
            DigitOverflow: If the new width cannot hold a number in use or planned
            FormatIncompatible: If the format changes under non-global numbering
        """
        old_config = self.id_config
        self._check_combination(new_config)
        if new_config.format != old_config.format and (
            old_config.numbering != NumberingStrategy.GLOBAL
            or new_config.numbering != NumberingStrategy.GLOBAL
        ):
            raise FormatIncompatible(
                f"Switching from {old_config.format.value} to {new_config.format.value} "
                f"requires global numbering (current: {old_config.numbering.value}, "
                f"requested: {new_config.numbering.value})",
                id_format=new_config.format.value, numbering=new_config.numbering.value,
            )
        self._check_digits(new_config.digits)

        same_numbering = old_config.numbering == new_config.numbering
        ordered = sorted(
            enumerate(self.data.requirements), key=lambda item: (item[1].created_at, item[0])
        )

        # Pass 1: keep numbers whose counter did not change
        heads: Dict[UUID, str] = {}
        numbers: Dict[UUID, int] = {}
        fresh: List[Requirement] = []
        in_use: Dict[Optional[str], set] = {}
        for _, record in ordered:
            head = self.key_head(record, new_config)
            heads[record.id] = head
            new_counter = self.counter_key(head, new_config)
            parsed = parse_key(record.spec_id) if record.spec_id else None
            if parsed and same_numbering:
                old_counter = self.counter_key(parsed[0], old_config)
                taken = in_use.setdefault(new_counter, set())
                if (new_config.numbering == NumberingStrategy.GLOBAL or old_counter == new_counter) \
                        and parsed[1] not in taken:
                    numbers[record.id] = parsed[1]
                    taken.add(parsed[1])
                    continue
            fresh.append(record)

        # Pass 2: fresh numbers in creation order, counters only move forward
        counters: Dict[Optional[str], int] = {}
        for counter, taken in in_use.items():
            counters[counter] = max(self._read_counter(counter), max(taken) + 1 if taken else 1)
        for record in fresh:
            counter = self.counter_key(heads[record.id], new_config)
            number = counters.get(counter, self._read_counter(counter))
            numbers[record.id] = number
            counters[counter] = number + 1

        planned_max = max(numbers.values(), default=0)
        if len(str(planned_max)) > new_config.digits:
            raise DigitOverflow(new_config.digits, planned_max)

        keys = {
            record_id: self.format_key(heads[record_id], number, new_config.digits)
            for record_id, number in numbers.items()
        }
        seen: Dict[str, UUID] = {}
        for record_id, key in keys.items():
            if key in seen:
                raise DuplicateAlternateKey(key, seen[key], record_id)
            seen[key] = record_id
        return keys, counters

    def rederive(self, new_config: IdConfiguration) -> Dict[UUID, Tuple[Optional[str], str]]:
        """
        Re-derive every alternate key under ``new_config``.

        The full plan is built and checked first; the in-memory model is
        only touched once the plan is known to be valid, so a failure leaves
        keys, counters and configuration unchanged.

        Returns:
            record id -> (old key, new key) for every key that changed
        """
        keys, counters = self.plan_rederive(new_config)

        changed: Dict[UUID, Tuple[Optional[str], str]] = {}
        for record in self.data.requirements:
            new_key = keys[record.id]
            if record.spec_id != new_key:
                changed[record.id] = (record.spec_id, new_key)
                record.spec_id = new_key
        for counter, value in counters.items():
            if self._read_counter(counter) < value:
                self._write_counter(counter, value)
        self.data.id_config = new_config

        logger.info("Re-derived alternate keys: %d of %d changed", len(changed), len(keys))
        return changed
