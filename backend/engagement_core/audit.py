"""
Nudge Audit Store
==================
Persists GenerationOutcome audit rows (text + provenance + attempts).
This is the caller-side collaborator: the generation client never
writes anything itself.

Table (created by the dashboard's migrations):
  nudges(id, learner_id, text, source, status, attempts, fallback_reason, created_at)
"""

import logging
from typing import Any, Dict, List, Optional

import asyncpg

from .models import GenerationOutcome, Provenance

logger = logging.getLogger(__name__)

# provenance → (source, status) as stored by the dashboard
_SOURCE_STATUS = {
    Provenance.EXTERNAL: ("llm", "sent"),
    Provenance.FALLBACK: ("template", "fallback"),
}


class NudgeStore:
    """
    asyncpg-backed audit trail for generated nudges.

    Write failures are logged and reported as None; they never undo a
    nudge that was already generated.
    """

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def record_outcome(self, learner_id: int, outcome: GenerationOutcome) -> Optional[int]:
        """Insert one audit row. Returns the nudge ID if successful."""
        source, status = _SOURCE_STATUS[outcome.provenance]
        reason = outcome.fallback_reason.value if outcome.fallback_reason else None
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow("""
                    INSERT INTO nudges
                        (learner_id, text, source, status, attempts, fallback_reason)
                    VALUES ($1, $2, $3, $4, $5, $6)
                    RETURNING id
                """, learner_id, outcome.text, source, status, outcome.attempts, reason)

                nudge_id = int(row["id"]) if row else None
                logger.info(
                    f"Nudge #{nudge_id} persisted for learner {learner_id} "
                    f"(source={source}, status={status}, attempts={outcome.attempts})"
                )
                return nudge_id

        except Exception as e:
            logger.error(f"Failed to persist nudge for learner {learner_id}: {e}")
            return None

    async def recent(self, learner_id: int, limit: int = 10) -> List[Dict[str, Any]]:
        """Fetch the most recent nudges for a learner (audit trail)."""
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch("""
                    SELECT id, learner_id, text, source, status, attempts,
                           fallback_reason, created_at
                    FROM nudges
                    WHERE learner_id = $1
                    ORDER BY created_at DESC
                    LIMIT $2
                """, learner_id, limit)
                return [dict(r) for r in rows]
        except Exception as e:
            logger.error(f"Failed to fetch nudge history for learner {learner_id}: {e}")
            return []
