"""Tests for provider payload normalization."""

from datetime import datetime, timezone

import pytest

from errors import MalformedEnvelopeError, UnknownProviderError
from models import PLACEHOLDER_EMAIL, PLACEHOLDER_NAME, PullRequestEvent, PushEvent, UnhandledEvent
from normalizer import normalize, parse_timestamp


class TestParseTimestamp:
    def test_azure_seven_digit_fraction(self):
        parsed = parse_timestamp("2024-02-25T19:01:00.1234567Z")
        assert parsed == datetime(2024, 2, 25, 19, 1, 0, 123456, tzinfo=timezone.utc)

    def test_offset_preserved(self):
        parsed = parse_timestamp("2024-02-25T19:01:00+02:00")
        assert parsed.utcoffset().total_seconds() == 7200

    def test_missing_uses_fallback(self):
        fallback = datetime(2020, 1, 1, tzinfo=timezone.utc)
        assert parse_timestamp(None, fallback) == fallback
        assert parse_timestamp("not a date", fallback) == fallback


class TestAzurePush:
    def test_fields(self, azure_push_payload):
        event = normalize("azure-devops", None, azure_push_payload())
        assert isinstance(event, PushEvent)
        assert event.repository.name == "Fabrikam-Fiber-Git"
        assert event.repository.url.endswith("/_git/Fabrikam-Fiber-Git")
        assert event.branch == "master"
        commit = event.commits[0]
        assert commit.hash == "be67f8871a4d2c75f13a51c1d3c30ac0d74d4ef4"
        assert commit.message == "Fixed bug in web.config file"
        assert commit.author.email == "fabrikamfiber4@hotmail.com"
        assert commit.changed_files == 3
        assert commit.timestamp.year == 2024

    def test_commit_without_id_skipped(self, azure_push_payload):
        payload = azure_push_payload(commits=[{"comment": "no id"}, {"commitId": "abc"}])
        event = normalize("azure-devops", None, payload)
        assert [c.hash for c in event.commits] == ["abc"]
        assert event.skipped == 1

    def test_missing_author_gets_placeholder(self, azure_push_payload):
        event = normalize("azure-devops", None, azure_push_payload(commits=[{"commitId": "abc"}]))
        assert event.commits[0].author.name == PLACEHOLDER_NAME
        assert event.commits[0].author.email == PLACEHOLDER_EMAIL

    def test_oversized_change_counts_ignored(self, azure_push_payload):
        payload = azure_push_payload(commits=[
            {"commitId": "abc", "changeCounts": {"Add": 2**62, "Edit": 2**62, "Delete": 2**62}},
        ])
        assert normalize("azure-devops", None, payload).commits[0].changed_files == 0

    def test_missing_repository_rejected(self):
        payload = {"eventType": "git.push", "resource": {"commits": []}}
        with pytest.raises(MalformedEnvelopeError):
            normalize("azure-devops", None, payload)


class TestAzurePullRequest:
    def test_fields(self, azure_pr_payload):
        event = normalize("azure-devops", None, azure_pr_payload())
        assert isinstance(event, PullRequestEvent)
        pr = event.pull_request
        assert pr.pr_id == 1
        assert pr.title == "my first pull request"
        assert pr.status == "active"
        assert pr.source_ref == "refs/heads/mytopic"
        assert pr.created_by.email == "fabrikamfiber4@hotmail.com"
        assert event.action == "created"

    def test_missing_id_skipped_not_rejected(self, azure_pr_payload):
        payload = azure_pr_payload()
        del payload["resource"]["pullRequestId"]
        event = normalize("azure-devops", None, payload)
        assert event.pull_request is None
        assert event.skipped == 1

    def test_missing_title_defaults(self, azure_pr_payload):
        payload = azure_pr_payload()
        del payload["resource"]["title"]
        assert normalize("azure-devops", None, payload).pull_request.title == "No Title"

    def test_commit_hashes_deduplicated(self, azure_pr_payload):
        payload = azure_pr_payload()
        payload["resource"]["commits"] = [{"commitId": "aaa"}, {"commitId": "bbb"}, {}]
        payload["resource"]["lastMergeSourceCommit"] = {"commitId": "bbb"}
        assert normalize("azure-devops", None, payload).pull_request.commit_hashes == ["aaa", "bbb"]

    def test_id_beyond_integer_column_skipped(self, azure_pr_payload):
        event = normalize("azure-devops", None, azure_pr_payload(pr_id=2**63))
        assert event.pull_request is None
        assert event.skipped == 1


class TestGitHub:
    def test_push(self, github_push_payload):
        event = normalize("github", "push", github_push_payload())
        assert isinstance(event, PushEvent)
        assert event.repository.url == "https://github.com/acme/web"
        assert [c.hash for c in event.commits] == ["a1b2c3", "d4e5f6"]
        assert event.commits[0].changed_files == 3

    def test_event_type_inferred(self, github_push_payload, github_pr_payload):
        assert isinstance(normalize("github", None, github_push_payload()), PushEvent)
        assert isinstance(normalize("github", None, github_pr_payload()), PullRequestEvent)

    @pytest.mark.parametrize("state,merged,expected", [
        ("open", False, "active"),
        ("closed", True, "completed"),
        ("closed", False, "abandoned"),
    ])
    def test_pr_status(self, github_pr_payload, state, merged, expected):
        event = normalize("github", "pull_request", github_pr_payload(state=state, merged=merged))
        assert event.pull_request.status == expected

    def test_pr_author_without_email(self, github_pr_payload):
        event = normalize("github", "pull_request", github_pr_payload())
        assert event.pull_request.created_by.email == "ada@users.noreply.github.com"

    def test_pr_without_head_sha_links_nothing(self, github_pr_payload):
        assert normalize("github", "pull_request", github_pr_payload()).pull_request.commit_hashes == []

    def test_unhandled_event(self):
        event = normalize("github", "ping", {"zen": "Keep it logically awesome."})
        assert isinstance(event, UnhandledEvent)
        assert event.event_type == "ping"


class TestEnvelope:
    def test_non_object_payload(self):
        with pytest.raises(MalformedEnvelopeError):
            normalize("github", "push", [1, 2, 3])

    def test_unknown_provider(self):
        with pytest.raises(UnknownProviderError):
            normalize("gitlab", "push", {})

    def test_unknown_azure_event(self):
        event = normalize("azure-devops", None, {"eventType": "build.complete", "resource": {}})
        assert isinstance(event, UnhandledEvent)
