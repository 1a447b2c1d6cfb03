"""
Cross-source deduplication of candidate groups and persisted detections.

Two stages:

1. In-run clustering. Scored candidate groups (bank, email, sms) that share a
   currency, have fuzzy-matching merchant keys and reference amounts within
   tolerance are clustered with union-find, so the merge relation is closed
   under transitivity: if A~B and B~C then A, B and C always end up in one
   cluster. Amount-less groups are attached to the single best-matching
   priced cluster instead of bridging clusters.

2. Resolution against the user's existing detections. Each cluster is
   matched to at most one existing detection; clusters that land on the same
   detection are combined into a single upsert. Statuses owned by the review
   workflow (confirmed/rejected/imported) are never changed: new sources are
   appended and confidence can only go up.
"""
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple

from app.config import DetectionConfig, load_detection_config
from app.services.candidate_grouper import merge_groups
from app.services.confidence_scorer import score_group
from app.services.detection_types import (
    CandidateGroup,
    Detection,
    DetectionSource,
    DetectionUpsert,
    ScoredGroup,
)
from app.services.merchant_categorizer import next_billing_date, resolve_category
from app.services.merchant_normalizer import normalize_merchant, pick_display_name
from app.services.text_similarity import merchant_similarity

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass
class MergedCandidate:
    """One cluster of same-subscription evidence from the current run."""
    scored: ScoredGroup
    merchant_keys: FrozenSet[str]
    member_count: int = 1
    ambiguous: bool = False

    @property
    def group(self) -> CandidateGroup:
        return self.scored.group


@dataclass(frozen=True)
class ExistingMatch:
    target_index: int
    similarity: float
    candidate_indexes: Tuple[int, ...]

    @property
    def ambiguous(self) -> bool:
        return len(self.candidate_indexes) > 1


@dataclass
class DedupOutcome:
    operations: List[DetectionUpsert] = field(default_factory=list)
    deferred: List[CandidateGroup] = field(default_factory=list)


def amounts_match(a: Optional[Decimal], b: Optional[Decimal], tolerance: float) -> bool:
    """
    Symmetric amount tolerance: the difference is within tolerance of the
    smaller amount. An unknown amount never contradicts a known one.
    """
    if a is None or b is None:
        return True
    smaller = min(abs(a), abs(b))
    return abs(a - b) <= smaller * Decimal(str(tolerance))


class _UnionFind:
    def __init__(self, size: int):
        self.parent = list(range(size))

    def find(self, item: int) -> int:
        while self.parent[item] != item:
            self.parent[item] = self.parent[self.parent[item]]
            item = self.parent[item]
        return item

    def union(self, a: int, b: int) -> None:
        root_a, root_b = self.find(a), self.find(b)
        if root_a == root_b:
            return
        # Lowest index stays root so cluster order follows input order
        if root_a < root_b:
            self.parent[root_b] = root_a
        else:
            self.parent[root_a] = root_b


def _best_key_similarity(keys_a: Sequence[str], keys_b: Sequence[str]) -> float:
    return max(
        (merchant_similarity(a, b) for a in keys_a for b in keys_b),
        default=0.0,
    )


def cluster_scored_groups(
    scored_groups: Sequence[ScoredGroup],
    config: Optional[DetectionConfig] = None,
) -> List[MergedCandidate]:
    """
    Merge scored groups from one run that describe the same subscription.

    Singleton clusters keep their score; merged clusters are re-scored over
    the combined evidence.
    """
    config = config or load_detection_config()
    threshold = config.name_similarity_threshold

    size = len(scored_groups)
    uf = _UnionFind(size)
    groups = [s.group for s in scored_groups]

    priced = [i for i, g in enumerate(groups) if g.is_priced and not g.is_unknown]
    unpriced = [i for i, g in enumerate(groups) if not g.is_priced and not g.is_unknown]

    for pos, i in enumerate(priced):
        for j in priced[pos + 1:]:
            gi, gj = groups[i], groups[j]
            if gi.currency != gj.currency:
                continue
            if not amounts_match(gi.reference_amount, gj.reference_amount,
                                 config.merge_amount_tolerance):
                continue
            if merchant_similarity(gi.normalized_merchant, gj.normalized_merchant) >= threshold:
                uf.union(i, j)

    ambiguous_members = set()
    leftover_unpriced: List[int] = []
    for i in unpriced:
        group = groups[i]
        # root -> (similarity, events, latest) of the best member in that cluster
        candidates: Dict[int, Tuple[float, int, datetime]] = {}
        for j in priced:
            other = groups[j]
            if other.currency != group.currency:
                continue
            similarity = merchant_similarity(group.normalized_merchant, other.normalized_merchant)
            if similarity < threshold:
                continue
            root = uf.find(j)
            rank = (similarity, len(other.events), other.latest_event_at or _EPOCH)
            if root not in candidates or rank > candidates[root]:
                candidates[root] = rank

        if not candidates:
            leftover_unpriced.append(i)
            continue

        best_root = max(candidates, key=lambda r: (candidates[r], -r))
        uf.union(best_root, i)
        if len(candidates) > 1:
            ambiguous_members.add(i)
            logger.warning(
                f"[DETECTION_DEDUP] Amount-less evidence for '{group.normalized_merchant}' "
                f"matches {len(candidates)} priced clusters; attached to the closest one"
            )

    for pos, i in enumerate(leftover_unpriced):
        for j in leftover_unpriced[pos + 1:]:
            gi, gj = groups[i], groups[j]
            if gi.currency != gj.currency:
                continue
            if merchant_similarity(gi.normalized_merchant, gj.normalized_merchant) >= threshold:
                uf.union(i, j)

    members: Dict[int, List[int]] = {}
    for i in range(size):
        members.setdefault(uf.find(i), []).append(i)

    merged: List[MergedCandidate] = []
    for root in sorted(members):
        indexes = members[root]
        keys = frozenset(groups[i].normalized_merchant for i in indexes)
        if len(indexes) == 1:
            scored = scored_groups[indexes[0]]
        else:
            combined = merge_groups([groups[i] for i in indexes])
            scored = score_group(combined, config)
            logger.debug(
                f"[DETECTION_DEDUP] Merged {len(indexes)} groups into "
                f"'{combined.normalized_merchant}' ({', '.join(sorted(combined.source_types))})"
            )
        merged.append(MergedCandidate(
            scored=scored,
            merchant_keys=keys,
            member_count=len(indexes),
            ambiguous=any(i in ambiguous_members for i in indexes),
        ))

    return merged


def _detection_key(detection: Detection) -> str:
    return detection.merchant_key or normalize_merchant(detection.name)


def _recency(detection: Detection) -> float:
    stamp = detection.updated_at or detection.last_seen_at
    if stamp is None:
        return float('-inf')
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=timezone.utc)
    return stamp.timestamp()


def match_existing(
    candidate: MergedCandidate,
    existing: Sequence[Detection],
    config: Optional[DetectionConfig] = None,
) -> Optional[ExistingMatch]:
    """
    Find the existing detection a cluster belongs to.

    A detection qualifies when it shares a source record with the cluster, or
    when currency matches, the merchant keys are similar enough and the
    amounts are within tolerance. Among several, the highest similarity wins,
    then the most recently updated one.
    """
    config = config or load_detection_config()
    group = candidate.group
    if group.is_unknown:
        return None

    sources = group.sources
    ranked = []
    for index, detection in enumerate(existing):
        if detection.currency != group.currency:
            continue

        overlap = len(sources & detection.sources)
        if overlap:
            similarity = 1.0
        else:
            similarity = _best_key_similarity(
                sorted(candidate.merchant_keys), [_detection_key(detection)]
            )
            if similarity < config.name_similarity_threshold:
                continue
            if not amounts_match(group.reference_amount, detection.amount,
                                 config.merge_amount_tolerance):
                continue

        ranked.append(((-similarity, -overlap, -_recency(detection), index), index, similarity))

    if not ranked:
        return None

    ranked.sort(key=lambda item: item[0])
    _, best_index, best_similarity = ranked[0]
    return ExistingMatch(
        target_index=best_index,
        similarity=best_similarity,
        candidate_indexes=tuple(item[1] for item in ranked),
    )


def _describe(group: CandidateGroup) -> str:
    description = f"Recurring pattern detected from {len(group.events)} transactions"
    if len(group.source_types) > 1:
        description += f" across {', '.join(sorted(group.source_types))} sources"
    return description


def _computed_fields(scored: ScoredGroup, display_name: str) -> dict:
    group = scored.group
    latest = group.latest_event_at
    return {
        "billing_cycle": scored.billing_cycle,
        "confidence_score": scored.confidence,
        "category": resolve_category(group.events, display_name),
        "next_billing_date": next_billing_date(
            latest.date() if latest else None, scored.billing_cycle
        ),
        "description": _describe(group),
        "last_seen_at": latest,
    }


def _later(a: Optional[datetime], b: Optional[datetime]) -> Optional[datetime]:
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


def _ids_of(existing: Sequence[Detection], indexes: Sequence[int]) -> Tuple[str, ...]:
    return tuple(str(existing[i].id) for i in indexes if existing[i].id is not None)


def _resolve_protected(
    detection: Detection,
    scored: ScoredGroup,
    new_sources: FrozenSet[DetectionSource],
) -> Tuple[str, Detection, str]:
    if not new_sources:
        return "skip", detection, f"no new evidence for {detection.status} detection"

    updated = replace(
        detection,
        sources=detection.sources | new_sources,
        confidence_score=max(detection.confidence_score, scored.confidence),
        last_seen_at=_later(detection.last_seen_at, scored.group.latest_event_at),
    )
    return (
        "update",
        updated,
        f"attached {len(new_sources)} new source(s) to {detection.status} detection",
    )


def _resolve_pending(
    detection: Detection,
    scored: ScoredGroup,
    new_sources: FrozenSet[DetectionSource],
    config: DetectionConfig,
) -> Tuple[str, Detection, str]:
    group = scored.group

    if scored.periodicity.sample_count < config.min_events:
        # A lone occurrence cannot re-establish cadence, even when several sources saw it
        if not new_sources:
            return "skip", detection, "no new evidence"
        updated = replace(
            detection,
            sources=detection.sources | new_sources,
            last_seen_at=_later(detection.last_seen_at, group.latest_event_at),
        )
        return "update", updated, f"attached {len(new_sources)} new source(s)"

    fields = _computed_fields(scored, detection.name)
    updated = replace(
        detection,
        amount=group.reference_amount if group.reference_amount is not None else detection.amount,
        sources=detection.sources | new_sources,
        merchant_key=detection.merchant_key or group.normalized_merchant,
        billing_cycle=fields["billing_cycle"],
        confidence_score=fields["confidence_score"],
        category=detection.category or fields["category"],
        next_billing_date=fields["next_billing_date"],
        description=fields["description"],
        last_seen_at=_later(detection.last_seen_at, fields["last_seen_at"]),
    )
    if updated == detection:
        return "skip", detection, "unchanged"
    return "update", updated, "refreshed pending detection with latest evidence"


def _new_detection(scored: ScoredGroup, user_id: str) -> Detection:
    group = scored.group
    name = pick_display_name(e.raw_merchant_text for e in group.events)
    fields = _computed_fields(scored, name)
    return Detection(
        id=None,
        user_id=user_id,
        name=name,
        amount=group.reference_amount,
        currency=group.currency,
        sources=group.sources,
        status="pending",
        merchant_key=group.normalized_merchant,
        **fields,
    )


def _should_create(candidate: MergedCandidate, config: DetectionConfig) -> bool:
    """
    Whether an unmatched cluster is strong enough to surface as a new detection.

    Cadence needs min_events distinct occurrences and min_create_confidence.
    A single charge corroborated by several source types is surfaced too.
    """
    group = candidate.group
    if group.is_unknown:
        return False

    scored = candidate.scored
    if scored.periodicity.sample_count >= config.min_events:
        if scored.confidence < config.min_create_confidence:
            logger.debug(
                f"[DETECTION_DEDUP] Deferring '{group.normalized_merchant}': "
                f"confidence {scored.confidence} below {config.min_create_confidence}"
            )
            return False
        return True

    return len(group.source_types) > 1 and len(group.events) >= config.min_events


def _narrow_amountless_target(
    detection: Detection,
    entries: List[Tuple[MergedCandidate, ExistingMatch]],
    config: DetectionConfig,
) -> Tuple[List[Tuple[MergedCandidate, ExistingMatch]],
           List[Tuple[MergedCandidate, ExistingMatch]]]:
    """
    A detection without an amount matches any price, so only the best priced
    cluster (and clusters at its price) may resolve to it. Clusters that
    share source records with it or carry no amount always stay.
    """
    priced = [(c, m) for c, m in entries if c.group.reference_amount is not None]
    if len(priced) < 2:
        return entries, []

    best, _ = max(
        priced,
        key=lambda entry: (
            entry[1].similarity,
            entry[0].scored.periodicity.sample_count,
            entry[0].group.latest_event_at or _EPOCH,
        ),
    )
    kept, released = [], []
    for candidate, match in entries:
        amount = candidate.group.reference_amount
        if (
            amount is None
            or candidate.group.sources & detection.sources
            or amounts_match(amount, best.group.reference_amount, config.merge_amount_tolerance)
        ):
            kept.append((candidate, match))
        else:
            released.append((candidate, match))

    if released:
        logger.warning(
            f"[DETECTION_DEDUP] Detection {detection.id} has no amount; kept the "
            f"{best.group.reference_amount} {best.group.currency} cluster and released "
            f"{len(released)} differently priced cluster(s)"
        )
    return kept, released


def resolve_detections(
    candidates: Sequence[MergedCandidate],
    existing: Sequence[Detection],
    user_id: str,
    config: Optional[DetectionConfig] = None,
) -> DedupOutcome:
    """
    Turn this run's clusters into create/update/skip operations.

    Resolution order per cluster:
      (a) matches a confirmed/rejected/imported detection: append new sources,
          confidence = max(existing, computed), nothing else changes
      (b) matches a pending detection: refresh amount, cycle and confidence,
          sources are a set union
      (c) no match: new pending detection, once the cluster has enough
          occurrences and confidence (see _should_create)
    """
    config = config or load_detection_config()
    outcome = DedupOutcome()

    # target index -> clusters resolving to it, in first-seen order
    by_target: Dict[int, List[Tuple[MergedCandidate, ExistingMatch]]] = {}
    # ordered plan entries: ("existing", target_index) or ("new", candidate)
    plan: List[Tuple[str, object]] = []

    for candidate in candidates:
        match = match_existing(candidate, existing, config)
        if match is None:
            plan.append(("new", candidate))
            continue
        if match.target_index not in by_target:
            by_target[match.target_index] = []
            plan.append(("existing", match.target_index))
        by_target[match.target_index].append((candidate, match))

    for target_index, entries in list(by_target.items()):
        detection = existing[target_index]
        if detection.amount is not None or len(entries) < 2:
            continue
        kept, released = _narrow_amountless_target(detection, entries, config)
        by_target[target_index] = kept
        for candidate, match in released:
            fallback = next(
                (i for i in match.candidate_indexes
                 if i != target_index and existing[i].amount is not None),
                None,
            )
            if fallback is None:
                plan.append(("new", candidate))
                continue
            if fallback not in by_target:
                by_target[fallback] = []
                plan.append(("existing", fallback))
            by_target[fallback].append((candidate, match))

    for kind, payload in plan:
        if kind == "new":
            candidate = payload
            group = candidate.group
            if not _should_create(candidate, config):
                outcome.deferred.append(group)
                continue
            detection = _new_detection(candidate.scored, user_id)
            outcome.operations.append(DetectionUpsert(
                action="create",
                detection=detection,
                reason=f"new {candidate.scored.billing_cycle} pattern",
                ambiguous_merge=candidate.ambiguous,
                added_sources=detection.sources,
            ))
            continue

        target_index = payload
        entries = by_target[target_index]
        detection = existing[target_index]

        if len(entries) == 1:
            scored = entries[0][0].scored
        else:
            scored = score_group(merge_groups([c.group for c, _ in entries]), config)
            logger.info(
                f"[DETECTION_DEDUP] {len(entries)} clusters resolve to detection "
                f"{detection.id}; combined into one upsert"
            )

        candidate_indexes = sorted({i for _, m in entries for i in m.candidate_indexes})
        ambiguous = any(m.ambiguous or c.ambiguous for c, m in entries)
        if ambiguous:
            logger.warning(
                f"[DETECTION_DEDUP] Ambiguous merge for '{scored.group.normalized_merchant}': "
                f"candidates {list(_ids_of(existing, candidate_indexes))}, chose {detection.id}"
            )

        new_sources = scored.group.sources - detection.sources
        if detection.is_protected:
            action, resolved, reason = _resolve_protected(detection, scored, new_sources)
        else:
            action, resolved, reason = _resolve_pending(detection, scored, new_sources, config)

        outcome.operations.append(DetectionUpsert(
            action=action,
            detection=resolved,
            reason=reason,
            ambiguous_merge=ambiguous,
            candidate_ids=_ids_of(existing, candidate_indexes) if ambiguous else (),
            added_sources=new_sources if action == "update" else frozenset(),
        ))

    return outcome
