import logging

from .models import (
    PULL_REQUEST_BODY,
    SUMMARIZE_COMMITS,
    Config,
    LegacyConfig,
    MergePolicy,
    Signals,
    UpdatePolicy,
)

logger = logging.getLogger(__name__)

MODE_WHITELIST = "whitelist"
MODE_BLACKLIST = "blacklist"
MODE_BODY = "body"

# Label spellings already in use on repositories configured with the legacy
# format. Listed literally; do not derive them.
UPDATE_LABELS = (
    "update me", "Update Me", "UPDATE ME",
    "update-me", "Update-Me", "UPDATE-ME",
    "update_me", "Update_Me", "UPDATE_ME",
)

MERGE_LABELS = (
    "merge when ready", "Merge When Ready", "MERGE WHEN READY",
    "merge-when-ready", "Merge-When-Ready", "MERGE-WHEN-READY",
    "merge_when_ready", "Merge_When_Ready", "MERGE_WHEN_READY",
)

DO_NOT_MERGE_LABELS = (
    "do not merge", "Do Not Merge", "DO NOT MERGE",
    "wip", "WIP",
    "do-not-merge", "Do-Not-Merge", "DO-NOT-MERGE",
    "do_not_merge", "Do_Not_Merge", "DO_NOT_MERGE",
)

MERGE_BODY_MARKER = "==MERGE_WHEN_READY=="


def migrate_legacy(legacy: LegacyConfig) -> Config:
    """Translate a legacy mode-based config into the equivalent v1 config.

    ``whitelist`` merges PRs carrying a "merge when ready" label, ``blacklist``
    merges everything except PRs labelled "do not merge"/"wip", and ``body``
    merges PRs whose body contains the merge marker and uses that body as the
    commit message. Every mode keeps the legacy "update me" labels for branch
    updates. Unknown modes produce a config with no signals at all.
    """
    update = UpdatePolicy(whitelist=Signals(labels=UPDATE_LABELS))
    strategy = legacy.strategy

    if legacy.mode == MODE_WHITELIST:
        merge = MergePolicy(
            whitelist=Signals(labels=MERGE_LABELS),
            method=strategy,
            options={strategy: frozenset({SUMMARIZE_COMMITS})},
            delete_after_merge=legacy.delete_after_merge,
        )
    elif legacy.mode == MODE_BLACKLIST:
        merge = MergePolicy(
            blacklist=Signals(labels=DO_NOT_MERGE_LABELS),
            method=strategy,
            options={strategy: frozenset({SUMMARIZE_COMMITS})},
            delete_after_merge=legacy.delete_after_merge,
        )
    elif legacy.mode == MODE_BODY:
        merge = MergePolicy(
            whitelist=Signals(comment_substrings=(MERGE_BODY_MARKER,)),
            method=strategy,
            options={strategy: frozenset({PULL_REQUEST_BODY})},
            delete_after_merge=legacy.delete_after_merge,
        )
    else:
        logger.warning("config.migrate: unknown legacy mode=%r; using empty configuration", legacy.mode)
        return Config(version=1)

    return Config(version=1, update=update, merge=merge)
