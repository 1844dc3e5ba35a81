"""Resolve emotion / mood labels to row ids, creating unseen labels."""

import logging
from dataclasses import dataclass, field

from studyspace.core.security import is_valid_uuid_format
from studyspace.db.postgrest import PostgrestClient

logger = logging.getLogger(__name__)


@dataclass
class ResolvedLabels:
    """Outcome of a resolve call, ids in input order."""

    ids: list[str] = field(default_factory=list)
    created: list[str] = field(default_factory=list)
    not_found: list[str] = field(default_factory=list)


def clean_inputs(raw_inputs: list[str] | None) -> list[str]:
    """Trim, drop blanks and de-duplicate while keeping order."""
    cleaned: list[str] = []
    for value in raw_inputs or []:
        value = str(value).strip()
        if value and value not in cleaned:
            cleaned.append(value)
    return cleaned


class LabelResolver:
    """Select-or-create lookup over a ``(id, name)`` table.

    Inputs that look like UUIDs are matched by id and never created. Anything
    else is a label matched on ``name``; missing labels are inserted when
    ``create_missing`` is set. The unique constraint on ``name`` makes a
    concurrent insert of the same label a skipped duplicate, after which the
    winner's row is read back.
    """

    def __init__(
        self,
        db: PostgrestClient,
        table: str,
        label_column: str = "name",
        create_missing: bool = True,
    ) -> None:
        self.db = db
        self.table = table
        self.label_column = label_column
        self.create_missing = create_missing

    async def resolve(self, raw_inputs: list[str] | None, credential: str | None = None) -> ResolvedLabels:
        inputs = clean_inputs(raw_inputs)
        result = ResolvedLabels()
        if not inputs:
            return result

        uuid_inputs = [value for value in inputs if is_valid_uuid_format(value)]
        label_inputs = [value for value in inputs if value not in uuid_inputs]

        known_ids: set[str] = set()
        if uuid_inputs:
            rows = await self.db.select(
                self.table, columns="id", filters={"id": uuid_inputs}, credential=credential
            )
            known_ids = {str(row["id"]) for row in rows}

        label_cache: dict[str, str] = {}
        if label_inputs:
            label_cache = await self._lookup(label_inputs, credential)
            missing = [label for label in label_inputs if label not in label_cache]
            if missing and self.create_missing:
                label_cache.update(await self._create(missing, credential))
                result.created = [label for label in missing if label in label_cache]

        for value in inputs:
            if value in uuid_inputs:
                if value in known_ids:
                    result.ids.append(value)
                else:
                    result.not_found.append(value)
            elif value in label_cache:
                if label_cache[value] not in result.ids:
                    result.ids.append(label_cache[value])
            else:
                result.not_found.append(value)

        if result.not_found:
            logger.info(
                f"Unresolved {self.table} inputs: {result.not_found}",
                extra={"event_type": "labels_unresolved", "table": self.table},
            )
        return result

    async def _lookup(self, labels: list[str], credential: str | None) -> dict[str, str]:
        rows = await self.db.select(
            self.table,
            columns=f"id,{self.label_column}",
            filters={self.label_column: labels},
            credential=credential,
        )
        return {str(row[self.label_column]): str(row["id"]) for row in rows}

    async def _create(self, labels: list[str], credential: str | None) -> dict[str, str]:
        inserted = await self.db.upsert(
            self.table,
            [{self.label_column: label} for label in labels],
            on_conflict=self.label_column,
            ignore_duplicates=True,
            credential=credential,
        )
        created = {str(row[self.label_column]): str(row["id"]) for row in inserted}

        # Rows skipped as duplicates were created by a concurrent request.
        raced = [label for label in labels if label not in created]
        if raced:
            created.update(await self._lookup(raced, credential))

        logger.info(
            f"Created {len(created)} new {self.table} rows",
            extra={"event_type": "labels_created", "table": self.table},
        )
        return created
