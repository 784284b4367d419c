"""Integration tests for the SQLite-backed store."""

from __future__ import annotations

import pytest

from longbox.core.errors import DuplicateIdentityError, NotFoundError
from longbox.core.matching.models import CrossSourceMapping
from longbox.core.store import FileFilter, FileRecord, SeriesRecord


def _file(library_id: str, relative_path: str, **fields) -> FileRecord:
    return FileRecord(
        library_id=library_id,
        path=f"/comics/{relative_path}",
        relative_path=relative_path,
        filename=relative_path.rsplit("/", 1)[-1],
        extension="cbz",
        **fields,
    )


class TestLibrariesAndFiles:
    """Test library and file persistence."""

    async def test_create_and_find_library(self, sql_store):
        """Test that a created library can be found by id."""
        library = await sql_store.create_library("Comics", "/comics")

        found = await sql_store.find_library(library.id)

        assert found == library
        assert await sql_store.find_library("missing") is None

    async def test_file_round_trip(self, sql_store):
        """Test that file metadata and list fields survive persistence."""
        library = await sql_store.create_library("Comics", "/comics")

        created = await sql_store.create_file(
            _file(library.id, "Batman/Batman 001.cbz", series_name="Batman", genres=["Superhero"], year=2016)
        )
        [listed] = await sql_store.list_files(library.id)

        assert created.id
        assert listed.id == created.id
        assert listed.genres == ["Superhero"]
        assert listed.year == 2016
        assert listed.status == "pending"

    async def test_filters_and_paging(self, sql_store):
        """Test status, unlinked and offset/limit filters ordered by path."""
        library = await sql_store.create_library("Comics", "/comics")
        series = await sql_store.create_series(SeriesRecord(name="Batman"))
        await sql_store.create_file(_file(library.id, "c.cbz"))
        await sql_store.create_file(_file(library.id, "a.cbz"))
        await sql_store.create_file(_file(library.id, "b.cbz", series_id=series.id, status="indexed"))
        await sql_store.create_file(_file(library.id, "d.cbz", status="orphaned"))

        unlinked = await sql_store.list_files(library.id, FileFilter(unlinked=True))
        indexed = await sql_store.list_files(library.id, FileFilter(statuses=("indexed",)))
        page = await sql_store.list_files(library.id, FileFilter(offset=1, limit=2))
        in_series = await sql_store.list_files(library.id, FileFilter(series_id=series.id))

        assert [f.relative_path for f in unlinked] == ["a.cbz", "c.cbz", "d.cbz"]
        assert [f.relative_path for f in indexed] == ["b.cbz"]
        assert [f.relative_path for f in page] == ["b.cbz", "c.cbz"]
        assert [f.relative_path for f in in_series] == ["b.cbz"]

    async def test_count_pending_excludes_linked_orphaned_and_quarantined(self, sql_store):
        """Test that only unlinked pending or indexed files count as pending."""
        library = await sql_store.create_library("Comics", "/comics")
        series = await sql_store.create_series(SeriesRecord(name="Batman"))
        await sql_store.create_file(_file(library.id, "a.cbz"))
        await sql_store.create_file(_file(library.id, "b.cbz", status="indexed"))
        await sql_store.create_file(_file(library.id, "c.cbz", series_id=series.id, status="indexed"))
        await sql_store.create_file(_file(library.id, "d.cbz", status="orphaned"))
        await sql_store.create_file(_file(library.id, "e.cbz", status="quarantined"))

        assert await sql_store.count_pending(library.id) == 2

    async def test_update_and_delete_file(self, sql_store):
        """Test updating then deleting a file."""
        library = await sql_store.create_library("Comics", "/comics")
        created = await sql_store.create_file(_file(library.id, "a.cbz"))

        updated = await sql_store.update_file(created.id, status="quarantined")
        await sql_store.delete_file(created.id)

        assert updated.status == "quarantined"
        assert await sql_store.list_files(library.id) == []

    async def test_missing_file(self, sql_store):
        """Test that updating or deleting an unknown file raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await sql_store.update_file("missing", status="indexed")
        with pytest.raises(NotFoundError):
            await sql_store.delete_file("missing")


class TestSeries:
    """Test series persistence and identity."""

    async def test_find_by_identity(self, sql_store):
        """Test case-insensitive identity lookup with canonical publishers."""
        created = await sql_store.create_series(SeriesRecord(name="Batman", publisher="DC Comics"))

        found = await sql_store.find_series_by_identity("The Batman", "DC")

        assert found is not None
        assert found.id == created.id
        assert found.identity_key == "batman|dc comics"
        assert await sql_store.find_series_by_identity("Batman") is None

    async def test_duplicate_identity_rejected(self, sql_store):
        """Test that the unique identity index raises DuplicateIdentityError."""
        await sql_store.create_series(SeriesRecord(name="Batman", publisher="DC"))

        with pytest.raises(DuplicateIdentityError) as exc_info:
            await sql_store.create_series(SeriesRecord(name="batman", publisher="DC Comics"))

        assert exc_info.value.identity_key == "batman|dc comics"
        assert len(await sql_store.list_series()) == 1

    async def test_list_series_includes_global(self, sql_store):
        """Test that library listings include series without a library."""
        library = await sql_store.create_library("Comics", "/comics")
        other = await sql_store.create_library("Other", "/other")
        await sql_store.create_series(SeriesRecord(name="Saga", library_id=library.id))
        await sql_store.create_series(SeriesRecord(name="Batman"))
        await sql_store.create_series(SeriesRecord(name="Monstress", library_id=other.id))

        listed = await sql_store.list_series(library.id)

        assert [s.name for s in listed] == ["Batman", "Saga"]

    async def test_update_series_recomputes_identity(self, sql_store):
        """Test that renaming a series updates its identity key."""
        series = await sql_store.create_series(SeriesRecord(name="Batman"))

        updated = await sql_store.update_series(series.id, publisher="DC", aliases=["Bats"])

        assert updated.identity_key == "batman|dc comics"
        assert updated.aliases == ["Bats"]
        assert await sql_store.find_series_by_identity("Batman", "DC") is not None

    async def test_update_series_conflict(self, sql_store):
        """Test that an update colliding with another identity is rejected."""
        await sql_store.create_series(SeriesRecord(name="Batman", publisher="DC"))
        other = await sql_store.create_series(SeriesRecord(name="Batman"))

        with pytest.raises(DuplicateIdentityError):
            await sql_store.update_series(other.id, publisher="DC")

    async def test_recalculate_progress(self, sql_store):
        """Test that the issue count follows linked files."""
        library = await sql_store.create_library("Comics", "/comics")
        series = await sql_store.create_series(SeriesRecord(name="Batman"))
        for name in ("a.cbz", "b.cbz"):
            await sql_store.create_file(_file(library.id, name, series_id=series.id, status="indexed"))

        await sql_store.recalculate_series_progress(series.id)

        [refreshed] = await sql_store.list_series()
        assert refreshed.issue_count == 2

    async def test_missing_series(self, sql_store):
        """Test that unknown series raise NotFoundError."""
        with pytest.raises(NotFoundError):
            await sql_store.update_series("missing", name="X")
        with pytest.raises(NotFoundError):
            await sql_store.recalculate_series_progress("missing")


class TestMappings:
    """Test cross-source mapping persistence."""

    def _mapping(self, matched_id: str = "m-1", **fields) -> CrossSourceMapping:
        return CrossSourceMapping(
            primary_source="comicvine",
            primary_source_id="cv-1",
            matched_source="metron",
            matched_source_id=matched_id,
            confidence=0.9,
            **fields,
        )

    async def test_save_and_list_from_both_sides(self, sql_store):
        """Test that a mapping is visible from either series."""
        await sql_store.save_mapping(self._mapping(match_factors={"year_match": True}))

        from_primary = await sql_store.list_mappings("comicvine", "cv-1")
        from_matched = await sql_store.list_mappings("metron", "m-1")

        assert len(from_primary) == 1
        assert from_matched == from_primary
        assert from_primary[0].match_factors == {"year_match": True}

    async def test_save_upserts_on_key(self, sql_store):
        """Test that saving the same source pair replaces the stored mapping."""
        await sql_store.save_mapping(self._mapping("m-1"))

        saved = await sql_store.save_mapping(self._mapping("m-2", match_method="user", verified=True))

        [stored] = await sql_store.list_mappings("comicvine", "cv-1")
        assert stored == saved
        assert stored.matched_source_id == "m-2"
        assert stored.verified is True
        assert await sql_store.list_mappings("metron", "m-1") == []

    async def test_delete_mappings(self, sql_store):
        """Test deleting every mapping that references a series."""
        await sql_store.save_mapping(self._mapping())
        await sql_store.save_mapping(
            CrossSourceMapping(
                primary_source="gcd",
                primary_source_id="g-1",
                matched_source="comicvine",
                matched_source_id="cv-1",
            )
        )

        deleted = await sql_store.delete_mappings("comicvine", "cv-1")

        assert deleted == 2
        assert await sql_store.list_mappings("comicvine", "cv-1") == []
