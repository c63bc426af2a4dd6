"""Link parts to indexed drawing files."""

from recordkit.locations import DrawingFileIndex, FolderAliases, FuzzyLocationMatcher
from recordkit.migrations.runner import Migration


def up(store):
    matcher = FuzzyLocationMatcher(
        DrawingFileIndex(store.db),
        FolderAliases.from_database(store.db),
        store.diagnostics,
    )
    matcher.link_parts(store.db)


def down(store):
    store.db.execute("UPDATE drawing_file SET part_id = NULL")


MIGRATION = Migration(sequence=13, name="link_drawing_files", up=up, down=down)
