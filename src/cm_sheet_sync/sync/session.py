"""Local session state: cache generation counter and operation history."""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from .._files import write_json_atomic

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class EntityState(BaseModel):
    """Last load and push of one entity kind."""

    entity: str
    last_load: datetime | None = None
    last_push: datetime | None = None
    rows_loaded: int = 0
    rows_pushed: int = 0
    rows_failed: int = 0

    model_config = {"populate_by_name": True}


class SessionState(BaseModel):
    """
    State kept between runs.

    Every operation draws a new ``generation``; the remote client embeds it in
    cache keys so nothing cached by an earlier operation is served again.
    """

    version: str = "1.0"
    created: datetime = Field(default_factory=_now)
    last_modified: datetime = Field(default_factory=_now)
    generation: int = 0
    entities: dict[str, EntityState] = Field(default_factory=dict)

    model_config = {"populate_by_name": True}

    @classmethod
    def load(cls, path: Path) -> "SessionState":
        """
        Load session state, falling back to the backup and then to a fresh
        state when the file is corrupted.
        """
        if not path.exists():
            return cls()

        for candidate in (path, path.with_suffix(path.suffix + ".backup")):
            if not candidate.exists():
                continue
            try:
                with open(candidate) as f:
                    state = cls.model_validate(json.load(f))
                if candidate != path:
                    logger.info("Recovered session state from backup")
                return state
            except (json.JSONDecodeError, ValidationError) as e:
                logger.error(f"Session state {candidate.name} corrupted: {e}")

        logger.warning("Starting with fresh session state")
        return cls()

    def save(self, path: Path) -> None:
        """Save atomically, keeping the previous file as a backup."""
        self.last_modified = _now()
        write_json_atomic(path, self.model_dump(mode="json"))

    def next_generation(self) -> int:
        """Advance and return the generation for a new operation."""
        self.generation += 1
        return self.generation

    def get_entity_state(self, entity: str) -> EntityState:
        if entity not in self.entities:
            self.entities[entity] = EntityState(entity=entity)
        return self.entities[entity]

    def mark_load(self, entity: str, rows: int) -> None:
        state = self.get_entity_state(entity)
        state.last_load = _now()
        state.rows_loaded = rows

    def mark_push(self, entity: str, pushed: int, failed: int) -> None:
        state = self.get_entity_state(entity)
        state.last_push = _now()
        state.rows_pushed = pushed
        state.rows_failed = failed
