"""
Load the global role templates from YAML and optionally bootstrap an org.

    python -m slotguard.scripts.seed_templates
    python -m slotguard.scripts.seed_templates --file seeds/role_templates.yaml
    python -m slotguard.scripts.seed_templates --org <org-uuid> --admin <user-uuid>

Template rows are replaced wholesale. With ``--org`` and ``--admin`` the
user is also made the organization's first administrator (slot 1).
"""

from __future__ import annotations

import argparse
import asyncio
import sys
import uuid
from pathlib import Path
from typing import Optional, Union

import pydantic
import structlog
import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from slotguard.access.catalog import ADMIN_SLOT, ALL_SLOTS, MAX_SLOT, MIN_SLOT, PERMISSION_KEYS
from slotguard.access.store import AccessStore, TemplateRecord
from slotguard.core.config import get_settings
from slotguard.core.logging import configure_logging

log = structlog.get_logger()


class TemplateSeed(BaseModel):
    slot: int = Field(ge=MIN_SLOT, le=MAX_SLOT)
    label: str = Field(min_length=1, max_length=100)
    # "all" grants the whole catalog
    permissions: Union[list[str], str] = Field(default_factory=list)

    @field_validator("permissions")
    @classmethod
    def _known_keys(cls, value):
        if isinstance(value, str):
            if value != "all":
                raise ValueError('permissions must be a list of keys or "all"')
            return sorted(PERMISSION_KEYS)
        unknown = sorted(set(value) - PERMISSION_KEYS)
        if unknown:
            raise ValueError(f"unknown permission keys: {', '.join(unknown)}")
        return value


class TemplateSeedFile(BaseModel):
    templates: list[TemplateSeed]

    @model_validator(mode="after")
    def _one_per_slot(self):
        slots = [t.slot for t in self.templates]
        duplicates = sorted({s for s in slots if slots.count(s) > 1})
        if duplicates:
            raise ValueError(f"duplicate template slots: {duplicates}")
        missing = sorted(set(ALL_SLOTS) - set(slots))
        if missing:
            log.warning("seed.templates_missing", slots=missing)
        return self


def load_templates(path: Path) -> list[TemplateRecord]:
    """Parse and validate a template seed file."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    seed = TemplateSeedFile.model_validate(data)
    return [
        TemplateRecord(t.slot, t.label, frozenset(t.permissions))
        for t in sorted(seed.templates, key=lambda t: t.slot)
    ]


async def seed(
    store: AccessStore,
    templates: list[TemplateRecord],
    *,
    org_id: Optional[uuid.UUID] = None,
    admin_id: Optional[uuid.UUID] = None,
) -> int:
    count = await store.replace_templates(templates)

    if org_id is not None and admin_id is not None:
        if await store.get_org_role(org_id, ADMIN_SLOT) is None:
            await store.upsert_org_role(org_id, ADMIN_SLOT, is_active=True)
        current = await store.get_membership_slot(admin_id, org_id)
        if current is None:
            await store.add_membership(admin_id, org_id, ADMIN_SLOT)
            log.info("seed.admin_added", org_id=str(org_id), user_id=str(admin_id))
        else:
            log.info(
                "seed.admin_exists",
                org_id=str(org_id),
                user_id=str(admin_id),
                slot=current,
            )
    return count


async def main(argv: Optional[list[str]] = None) -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Seed global role templates.")
    parser.add_argument("--file", default=settings.template_seed_path, help="YAML seed file")
    parser.add_argument("--org", type=uuid.UUID, help="Organization to bootstrap")
    parser.add_argument("--admin", type=uuid.UUID, help="User to make the org's administrator")
    args = parser.parse_args(argv)

    if (args.org is None) != (args.admin is None):
        parser.error("--org and --admin must be given together")

    configure_logging(settings.log_level, "text")
    try:
        templates = load_templates(Path(args.file))
    except (OSError, yaml.YAMLError, pydantic.ValidationError) as exc:
        log.error("seed.invalid_file", path=args.file, error=str(exc))
        return 1

    from slotguard.core.database import engine, init_db

    await init_db()
    store = AccessStore(engine, timeout=settings.store_timeout_seconds)
    try:
        count = await seed(store, templates, org_id=args.org, admin_id=args.admin)
    finally:
        await engine.dispose()
    log.info("seed.done", templates=count, path=args.file)
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
