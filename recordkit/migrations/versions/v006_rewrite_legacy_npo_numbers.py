"""Rewrite NPO-{date}-{customer}-{seq} numbers to NPO-{oe}-{job}-{line}."""

import logging

from recordkit.identity import IdentityResolver
from recordkit.migrations.runner import Migration

logger = logging.getLogger(__name__)


def up(store):
    IdentityResolver(store.db, store.diagnostics).rewrite_legacy_npo_numbers()


def down(store):
    # The obsolete numbers embedded the run date and a counter; they cannot be rebuilt
    logger.info("Legacy NPO rewrite is a one-way repair; nothing to undo")


MIGRATION = Migration(sequence=6, name="rewrite_legacy_npo_numbers", up=up, down=down)
