"""
Tests for gitsocial domain objects.

Tests cover:
- Date range merging and coverage
- SocialList persistence form
- Repository / Follower serialization
- OperationSummary counting
- Result shape
"""

from datetime import date, datetime

import pytest

from gitsocial.domain import (
    CloneState,
    DateRange,
    Follower,
    ListVersion,
    OperationDetail,
    OperationStatus,
    OperationSummary,
    Repository,
    Result,
    SocialList,
    add_range,
    current_week_monday,
    is_range_covered,
    merge_ranges,
    oldest_start,
    to_date_string,
)


class TestDateRanges:
    """Tests for DateRange helpers."""

    def test_merge_adjacent(self):
        """Ranges one day apart are merged."""
        merged = merge_ranges([DateRange('2025-01-11', '2025-01-20'), DateRange('2025-01-01', '2025-01-10')])
        assert merged == [DateRange('2025-01-01', '2025-01-20')]

    def test_merge_keeps_gaps(self):
        merged = merge_ranges([DateRange('2025-01-01', '2025-01-05'), DateRange('2025-01-10', '2025-01-12')])
        assert len(merged) == 2

    def test_merge_overlap_keeps_later_end(self):
        merged = merge_ranges([DateRange('2025-01-01', '2025-01-31'), DateRange('2025-01-05', '2025-01-10')])
        assert merged == [DateRange('2025-01-01', '2025-01-31')]

    def test_add_range_extends_backwards(self):
        ranges = add_range([DateRange('2025-01-01', '2025-01-31')], DateRange('2024-12-01', '2025-01-31'))
        assert ranges == [DateRange('2024-12-01', '2025-01-31')]

    def test_covered(self):
        ranges = [DateRange('2025-01-01', '2025-01-31')]
        assert is_range_covered('2025-01-10', '2025-01-31', ranges)
        assert not is_range_covered('2024-12-01', '2025-01-31', ranges)

    def test_gap_is_not_covered(self):
        ranges = [DateRange('2025-01-01', '2025-01-05'), DateRange('2025-01-10', '2025-01-31')]
        assert not is_range_covered('2025-01-01', '2025-01-31', ranges)

    def test_empty_is_not_covered(self):
        assert not is_range_covered('2025-01-01', '2025-01-02', [])

    def test_oldest_start(self):
        assert oldest_start([DateRange('2025-02-01', '2025-02-02'), DateRange('2025-01-01', '2025-01-02')]) == '2025-01-01'
        assert oldest_start([]) is None

    def test_current_week_monday(self):
        assert current_week_monday(date(2025, 1, 16)) == date(2025, 1, 13)
        assert current_week_monday(date(2025, 1, 13)) == date(2025, 1, 13)

    @pytest.mark.parametrize("value,expected", [
        (date(2025, 1, 2), '2025-01-02'),
        (datetime(2025, 1, 2, 15, 30), '2025-01-02'),
        ('2025-01-02T10:00:00Z', '2025-01-02'),
        ('2025-01-02', '2025-01-02'),
    ])
    def test_to_date_string(self, value, expected):
        assert to_date_string(value) == expected

    def test_from_dict(self):
        assert DateRange.from_dict({'start': '2025-01-01T00:00:00', 'end': '2025-01-02'}) == \
            DateRange('2025-01-01', '2025-01-02')


class TestSocialList:
    """Tests for SocialList."""

    def test_storage_dict_excludes_runtime_flags(self):
        social_list = SocialList(id='reading', name='Reading', repositories=('https://github.com/u/r#branch:main',))
        flagged = social_list.with_flags(is_unpushed=True, is_followed_locally=False)

        stored = flagged.to_storage_dict()

        assert 'isUnpushed' not in stored
        assert 'isFollowedLocally' not in stored
        assert flagged.to_dict()['isUnpushed'] is True

    def test_from_dict_defaults(self):
        """Missing id and name fall back to the ref name."""
        social_list = SocialList.from_dict({'repositories': ['a', 3, None]}, fallback_id='reading')
        assert social_list.id == 'reading'
        assert social_list.name == 'reading'
        assert social_list.repositories == ('a',)

    def test_from_dict_rejects_non_object(self):
        with pytest.raises(ValueError):
            SocialList.from_dict(['not', 'a', 'dict'])

    def test_is_followed(self):
        assert SocialList(id='a', name='a', source='https://github.com/u/r#list:a').is_followed
        assert not SocialList(id='a', name='a').is_followed

    def test_version_repositories(self):
        version = ListVersion(hash='abc', author='A', email='a@x', timestamp=datetime(2025, 1, 1),
                              content={'repositories': ['x', 1]})
        assert version.repositories == ['x']
        assert ListVersion(hash='abc', author='A', email='a@x', timestamp=datetime(2025, 1, 1),
                           content='corrupt').repositories == []


class TestRepository:
    """Tests for Repository and Follower."""

    def test_to_dict(self):
        repo = Repository(
            id='https://github.com/u/r#branch:main',
            url='https://github.com/u/r',
            name='u/r',
            fetched_ranges=(DateRange('2025-01-01', '2025-01-02'),),
            lists=('reading',),
        )
        d = repo.to_dict()
        assert d['fetchedRanges'] == [{'start': '2025-01-01', 'end': '2025-01-02'}]
        assert d['lists'] == ['reading']
        assert 'path' not in d

    def test_follower_from_repository(self):
        repo = Repository(id='x#branch:main', url='x', name='x', path='/tmp/x')
        follower = Follower.from_repository(repo, 'following')
        assert follower.path == '/tmp/x'
        assert follower.to_dict()['followsVia'] == 'following'

    def test_clone_state_last_fetch_time(self):
        state = CloneState(last_fetch='2025-01-02T03:04:05+00:00')
        assert state.last_fetch_time == datetime(2025, 1, 2, 3, 4, 5)
        assert CloneState(last_fetch='2025-01-02T03:04:05+02:00').last_fetch_time == datetime(2025, 1, 2, 1, 4, 5)
        assert CloneState(last_fetch='garbage').last_fetch_time is None


class TestOperationSummary:
    """Tests for OperationSummary."""

    def test_counts(self):
        summary = OperationSummary(operation='fetch_updates')
        summary.add_detail(OperationDetail(url='a', branch='main', status=OperationStatus.SUCCESS, action='fetched'))
        summary.add_detail(OperationDetail(url='b', branch='main', status=OperationStatus.SKIPPED, action='skipped'))
        summary.add_detail(OperationDetail(url='c', branch='dev', status=OperationStatus.FAILED,
                                           action='fetch_failed', error='boom'))

        assert (summary.total, summary.fetched, summary.skipped, summary.failed) == (3, 1, 1, 1)
        assert not summary.success
        assert summary.fetched_repositories == ['a#branch:main']
        assert summary.failures == [{'url': 'c', 'branch': 'dev', 'error': 'boom'}]
        assert summary.to_dict()['failures'][0]['url'] == 'c'


class TestResult:
    """Tests for Result."""

    def test_ok(self):
        result = Result.ok([1])
        assert result.success
        assert result.code is None

    def test_fail(self):
        result = Result.fail('LIST_EXISTS', 'exists', {'id': 'x'})
        assert not result.success
        assert result.code == 'LIST_EXISTS'
        assert result.to_dict()['error'] == {'code': 'LIST_EXISTS', 'message': 'exists', 'details': {'id': 'x'}}

    def test_from_error_without_error(self):
        assert Result.from_error(None).code == 'UNEXPECTED_ERROR'
