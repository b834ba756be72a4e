"""Unit tests for migrations and MigrationResult."""

from packages.common.database import MIGRATIONS_DIR, MigrationResult, migration_files


class TestMigrationResult:
    def test_default_empty_lists(self) -> None:
        result = MigrationResult()
        assert result.applied == []
        assert result.skipped == []

    def test_both_fields(self) -> None:
        result = MigrationResult(applied=["002_user_quotas"], skipped=["001_learning"])
        assert result.applied == ["002_user_quotas"]
        assert result.skipped == ["001_learning"]

    def test_instances_do_not_share_lists(self) -> None:
        a = MigrationResult()
        b = MigrationResult()
        a.applied.append("001")
        assert b.applied == []


class TestMigrationFiles:
    def test_files_are_ordered(self) -> None:
        names = [p.name for p in migration_files()]
        assert names == ["001_learning.sql", "002_user_quotas.sql"]

    def test_learning_schema_has_fsrs_column(self) -> None:
        sql = (MIGRATIONS_DIR / "001_learning.sql").read_text()
        assert "learning_cards" in sql
        assert "fsrs_data" in sql

    def test_quota_schema_has_reset_anchors(self) -> None:
        sql = (MIGRATIONS_DIR / "002_user_quotas.sql").read_text()
        for column in (
            "window_start_at",
            "last_reset_at",
            "last_weekly_reset_at",
            "last_monthly_reset_at",
        ):
            assert column in sql
