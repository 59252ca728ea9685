"""Round-number drink counts worth announcing to a group."""

from typing import Dict, Mapping

MILESTONE_EVERY = 100


def check_milestone(new_total_count: int) -> bool:
    """True when a group's lifetime drink count lands on a multiple of 100.

    0 counts as a multiple; callers only ask after an insert, so they never pass it.
    """
    if new_total_count < 0:
        raise ValueError("drink count must be >= 0")
    return new_total_count % MILESTONE_EVERY == 0


def milestones_crossed(counts_by_group: Mapping[int, int]) -> Dict[int, int]:
    """{group_id: count} for the groups whose new total is a milestone."""
    return {gid: count for gid, count in counts_by_group.items() if check_milestone(count)}
