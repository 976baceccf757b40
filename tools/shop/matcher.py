"""
Customer ↔ Repair Record Matcher

Decides which repairs belong to a logged-in customer. New repairs carry an
explicit ``clientId`` and match on it directly. Older repairs have no link,
so they are matched on the fields copied onto them at creation time:

    0. clientId        repair.clientId == identity.client_id
    1. email           repair.ownerEmail == identity.email
    2. name            repair.ownerName == identity.owner_name
    3. phone           both non-empty and equal
    4. vehicle         make AND model equal, case-insensitive

A repair matching any rule is in the result (union, one entry per id). The
recorded reason is the first rule that matched, in the order above.

Only if no repair matches any rule, a fallback pass looks for the customer's
email, name or phone as a substring of each whole serialized repair. That
pass produces false positives by nature; its results are flagged
``heuristic`` and must be shown as "possibly yours", never as "your repairs".

If the fallback finds nothing either, the most recent repairs system-wide
are returned in ``diagnostic`` (never in ``repairs``) for manual
reconciliation by staff.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from tools.shop.records import Client, Repair

logger = logging.getLogger("shop.matcher")

CONFIDENT = "confident"
HEURISTIC = "heuristic"
NO_MATCH = "none"

REASON_CLIENT_ID = "client_id"
REASON_EMAIL = "email"
REASON_NAME = "name"
REASON_PHONE = "phone"
REASON_VEHICLE = "vehicle"
REASON_FALLBACK = "fallback"


@dataclass
class CustomerIdentity:
    """Who is asking: authenticated email plus the linked Client profile."""
    email: str = ""
    owner_name: str = ""
    phone: str = ""
    make: str = ""
    model: str = ""
    client_id: str = ""

    @classmethod
    def from_client(cls, email: str, client: Client | None) -> "CustomerIdentity":
        if client is None:
            return cls(email=email)
        return cls(
            email=email,
            owner_name=client.owner_name,
            phone=client.phone,
            make=client.make,
            model=client.model,
            client_id=client.id,
        )


@dataclass
class MatchResult:
    """Outcome of matching one customer against the repair set.

    Attributes:
        repairs:     Matched repairs, newest first, no duplicate ids.
        reasons:     repair id → rule that matched it.
        confidence:  "confident" (primary rules), "heuristic" (fallback
                     substring pass) or "none".
        diagnostic:  Most recent repairs system-wide, only when nothing
                     matched at all. Not the customer's repairs.
    """
    repairs: list[Repair] = field(default_factory=list)
    reasons: dict[str, str] = field(default_factory=dict)
    confidence: str = NO_MATCH
    diagnostic: list[Repair] = field(default_factory=list)

    @property
    def is_confident(self) -> bool:
        return self.confidence == CONFIDENT

    def to_dict(self) -> dict[str, Any]:
        return {
            "repairs": [r.to_dict() for r in self.repairs],
            "reasons": self.reasons,
            "confidence": self.confidence,
            "diagnostic": [r.to_dict() for r in self.diagnostic],
        }


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

def _same_vehicle(repair: Repair, identity: CustomerIdentity) -> bool:
    if not (repair.make and repair.model and identity.make and identity.model):
        return False
    return (
        repair.make.lower() == identity.make.lower()
        and repair.model.lower() == identity.model.lower()
    )


def primary_reason(repair: Repair, identity: CustomerIdentity) -> str | None:
    """Return the first primary rule that ties ``repair`` to ``identity``."""
    if identity.client_id and repair.client_id == identity.client_id:
        return REASON_CLIENT_ID
    if identity.email and repair.owner_email == identity.email:
        return REASON_EMAIL
    if identity.owner_name and repair.owner_name == identity.owner_name:
        return REASON_NAME
    if identity.phone and repair.phone and repair.phone == identity.phone:
        return REASON_PHONE
    if _same_vehicle(repair, identity):
        return REASON_VEHICLE
    return None


def _created_key(repair: Repair) -> tuple[int, int]:
    if repair.created_at is None:
        return (0, 0)
    return (repair.created_at.seconds, repair.created_at.nanoseconds)


def newest_first(repairs: Iterable[Repair]) -> list[Repair]:
    """Stable sort by createdAt descending; ties keep input order."""
    return sorted(repairs, key=_created_key, reverse=True)


def fallback_matches(identity: CustomerIdentity, repairs: list[Repair]) -> list[Repair]:
    """Substring pass over each serialized repair.

    A repair matches if its stored fields (not its generated id), as
    lowercase JSON, contain the customer's lowercased email, name or
    phone. Empty needles are skipped.
    """
    needles = [
        n.lower() for n in (identity.email, identity.owner_name, identity.phone) if n
    ]
    if not needles:
        return []
    found = []
    for repair in repairs:
        haystack = json.dumps(repair.to_doc(), ensure_ascii=False).lower()
        if any(n in haystack for n in needles):
            found.append(repair)
    return found


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def match_repairs(
    identity: CustomerIdentity,
    repairs: list[Repair],
    fallback: bool = True,
    diagnostic_count: int = 5,
) -> MatchResult:
    """Associate ``identity`` with the subset of ``repairs`` that are theirs.

    Args:
        identity:         Customer email plus linked profile fields.
        repairs:          Every repair in storage, in storage order.
        fallback:         Run the substring pass when nothing matched.
        diagnostic_count: How many recent repairs to attach when nothing
                          matched at all (0 disables).
    """
    matched: dict[str, Repair] = {}
    reasons: dict[str, str] = {}

    for repair in repairs:
        if repair.id in matched:
            continue
        reason = primary_reason(repair, identity)
        if reason is not None:
            matched[repair.id] = repair
            reasons[repair.id] = reason

    if matched:
        logger.info("Matched %d repair(s) for %s", len(matched), identity.email or identity.owner_name)
        return MatchResult(
            repairs=newest_first(matched.values()),
            reasons=reasons,
            confidence=CONFIDENT,
        )

    if fallback:
        partial: dict[str, Repair] = {}
        for repair in fallback_matches(identity, repairs):
            partial.setdefault(repair.id, repair)
        if partial:
            logger.warning(
                "No confident match for %s; %d heuristic match(es) need confirmation",
                identity.email or identity.owner_name, len(partial),
            )
            return MatchResult(
                repairs=newest_first(partial.values()),
                reasons={rid: REASON_FALLBACK for rid in partial},
                confidence=HEURISTIC,
            )

    logger.info("No repairs matched for %s", identity.email or identity.owner_name)
    diagnostic = newest_first(repairs)[:diagnostic_count] if diagnostic_count > 0 else []
    return MatchResult(confidence=NO_MATCH, diagnostic=diagnostic)


def owns_repair(identity: CustomerIdentity, repair: Repair) -> bool:
    """Ownership check for opening a single repair by id.

    Stricter than the list matcher: a name alone is not enough, the
    vehicle has to agree too.
    """
    if identity.client_id and repair.client_id == identity.client_id:
        return True
    if identity.email and repair.owner_email == identity.email:
        return True
    return bool(
        identity.owner_name
        and repair.owner_name == identity.owner_name
        and repair.make == identity.make
        and repair.model == identity.model
    )
