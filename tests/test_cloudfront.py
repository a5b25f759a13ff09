"""Tests for CloudFront invalidation."""

import math
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import patch

import pytest
from botocore.exceptions import WaiterError

from pys3sync.config import SyncOptions
from pys3sync.exceptions import S3SyncInvalidationError, S3SyncRateLimitError
from pys3sync.sync.cloudfront import (
    InvalidationController,
    is_rate_limit_error,
    path_covered_by_wildcard,
    prepare_paths,
    remove_redundant_paths,
)
from pys3sync.sync.context import InvalidationPathSet, RunContext


@pytest.fixture
def options():
    """Create options with invalidation enabled."""
    return SyncOptions(
        bucket="example.com",
        cloudfront_invalidate=True,
        cloudfront_distribution_id="E123",
        cloudfront_invalidation_batch_delay=0,
    )


@pytest.fixture
def controller(options, mock_output, cloudfront_client):
    """Create an invalidation controller with a mock CloudFront client."""
    context = RunContext(
        options, output=mock_output, cloudfront_client=cloudfront_client
    )
    return InvalidationController(context)


def sent_paths(cloudfront_client):
    """Paths of every create_invalidation call, in order."""
    return [
        call.kwargs["InvalidationBatch"]["Paths"]["Items"]
        for call in cloudfront_client.create_invalidation.call_args_list
    ]


class TestPreparePaths:
    """Tests for path normalization and redundancy removal."""

    def test_wildcard_covers_children(self):
        """Test /a/* subsumes every path below /a."""
        assert prepare_paths(["/a/*", "/a/b.html", "/a/c/d.html"]) == ["/a/*"]

    def test_deduplicates_mixed_slashes(self):
        assert prepare_paths(["/x", "/x", "x"]) == ["/x"]

    def test_collapses_repeated_slashes(self):
        assert prepare_paths(["//a//b.html"]) == ["/a/b.html"]

    def test_root_wildcard(self):
        assert prepare_paths(["/a.html", "/*", "/b/c.html"]) == ["/*"]

    def test_invalidate_all(self):
        assert prepare_paths([], invalidate_all=True) == ["/*"]
        assert prepare_paths(["/a", "/b"], invalidate_all=True) == ["/*"]

    def test_sibling_not_covered(self):
        """Test /ab/c.html is not covered by /a/*."""
        assert prepare_paths(["/a/*", "/ab/c.html"]) == ["/a/*", "/ab/c.html"]

    def test_nested_wildcards(self):
        assert remove_redundant_paths(["/a/*", "/a/b/*", "/a/b/c.html"]) == ["/a/*"]

    def test_sorted_output(self):
        assert prepare_paths(["z.html", "a.html", "m/n.html"]) == [
            "/a.html",
            "/m/n.html",
            "/z.html",
        ]

    def test_wildcard_covers_names_sorting_before_it(self):
        """Test /a/* covers siblings whose names sort before "*"."""
        paths = ["/a/*", "/a/(1).html", "/a/%20x.html", "/a/!x.html", "/a/b.html"]
        assert prepare_paths(paths) == ["/a/*"]

    def test_unsafe_characters_encoded(self):
        assert prepare_paths(["my page.html", "café/menü.html"]) == [
            "/caf%C3%A9/men%C3%BC.html",
            "/my%20page.html",
        ]

    def test_reserved_characters_kept(self):
        assert prepare_paths(["/a/(1).html", "/b/x+y.html"]) == [
            "/a/(1).html",
            "/b/x+y.html",
        ]

    def test_encoded_path_covered_by_wildcard(self):
        assert prepare_paths(["/docs/*", "/docs/my file.html"]) == ["/docs/*"]

    def test_path_covered_by_wildcard(self):
        assert path_covered_by_wildcard("/a/b/c.html", {"/a"})
        assert not path_covered_by_wildcard("/a/b/c.html", set())
        assert not path_covered_by_wildcard("/a", {"/a"})


class TestInvalidate:
    """Tests for InvalidationController.invalidate."""

    def test_disabled(self, options, controller, cloudfront_client):
        options.cloudfront_invalidate = False
        assert controller.invalidate(["/a"]) == []
        cloudfront_client.create_invalidation.assert_not_called()

    def test_missing_distribution(self, options, controller, cloudfront_client, mock_output):
        """Test a missing distribution ID skips with a warning."""
        options.cloudfront_distribution_id = None
        assert controller.invalidate(["/a"]) == []
        cloudfront_client.create_invalidation.assert_not_called()
        mock_output.warning.assert_called_once()

    def test_no_paths(self, controller, cloudfront_client):
        assert controller.invalidate([]) == []
        cloudfront_client.create_invalidation.assert_not_called()

    def test_single_batch(self, controller, cloudfront_client):
        assert controller.invalidate(["b.html", "/a.html"]) == ["I123"]
        call = cloudfront_client.create_invalidation.call_args
        assert call.kwargs["DistributionId"] == "E123"
        batch = call.kwargs["InvalidationBatch"]
        assert batch["Paths"] == {"Quantity": 2, "Items": ["/a.html", "/b.html"]}
        assert batch["CallerReference"].startswith("pys3sync-")

    def test_invalidate_all_without_paths(self, options, controller, cloudfront_client):
        options.cloudfront_invalidate_all = True
        controller.invalidate([])
        assert sent_paths(cloudfront_client) == [["/*"]]

    def test_uses_context_paths_by_default(self, controller, cloudfront_client):
        controller.context.add_invalidation_path("a.html")
        controller.invalidate()
        assert sent_paths(cloudfront_client) == [["/a.html"]]

    @pytest.mark.parametrize("count,batch_size", [(10, 3), (2500, 1000), (7, 7)])
    def test_batches(self, options, controller, cloudfront_client, count, batch_size):
        """Test N paths with batch size B make ceil(N/B) requests."""
        options.cloudfront_invalidation_batch_size = batch_size
        paths = [f"/p{i:05d}.html" for i in range(count)]
        with patch("pys3sync.sync.cloudfront.time.sleep"):
            controller.invalidate(paths)
        batches = sent_paths(cloudfront_client)
        assert len(batches) == math.ceil(count / batch_size)
        assert all(len(b) <= batch_size for b in batches)
        assert sum(len(b) for b in batches) == count

    def test_batch_size_capped(self, options, controller, cloudfront_client):
        options.cloudfront_invalidation_batch_size = 10_000
        paths = [f"/p{i:05d}.html" for i in range(3001)]
        with patch("pys3sync.sync.cloudfront.time.sleep"):
            controller.invalidate(paths)
        assert [len(b) for b in sent_paths(cloudfront_client)] == [3000, 1]

    def test_delay_between_batches_only(self, options, controller):
        """Test the batch delay is skipped after the last batch."""
        options.cloudfront_invalidation_batch_size = 1
        options.cloudfront_invalidation_batch_delay = 2
        with patch("pys3sync.sync.cloudfront.time.sleep") as mock_sleep:
            controller.invalidate(["/a", "/b", "/c"])
        assert [c.args[0] for c in mock_sleep.call_args_list] == [2, 2]

    def test_unique_caller_references(self, options, controller, cloudfront_client):
        options.cloudfront_invalidation_batch_size = 1
        controller.invalidate(["/a", "/b"])
        references = [
            call.kwargs["InvalidationBatch"]["CallerReference"]
            for call in cloudfront_client.create_invalidation.call_args_list
        ]
        assert len(set(references)) == 2

    def test_dry_run(self, options, controller, cloudfront_client, mock_output):
        options.dry_run = True
        assert controller.invalidate(["/a", "/b"]) == []
        cloudfront_client.create_invalidation.assert_not_called()
        messages = [c.args[0] for c in mock_output.info.call_args_list]
        assert any("DRY RUN" in m for m in messages)


class TestRetry:
    """Tests for throttling retries."""

    def test_is_rate_limit_error(self, client_error):
        assert is_rate_limit_error(client_error("Throttling", "Rate exceeded"))
        assert is_rate_limit_error(client_error("TooManyInvalidationsInProgress"))
        assert is_rate_limit_error(client_error("Whatever", "Rate exceeded"))
        assert not is_rate_limit_error(client_error("AccessDenied", "nope"))

    def test_retry_then_success(self, controller, cloudfront_client, client_error):
        cloudfront_client.create_invalidation.side_effect = [
            client_error("Throttling", "Rate exceeded"),
            client_error("Throttling", "Rate exceeded"),
            {"Invalidation": {"Id": "I9"}},
        ]
        with patch("pys3sync.sync.cloudfront.time.sleep") as mock_sleep:
            assert controller.invalidate(["/a"]) == ["I9"]
        assert mock_sleep.call_count == 2

    def test_retries_exhausted(self, options, controller, cloudfront_client, client_error):
        """Test max+1 throttled attempts raise with non-decreasing delays."""
        options.cloudfront_invalidation_max_retries = 4
        cloudfront_client.create_invalidation.side_effect = client_error(
            "Throttling", "Rate exceeded"
        )
        with patch("pys3sync.sync.cloudfront.time.sleep") as mock_sleep:
            with pytest.raises(S3SyncRateLimitError):
                controller.invalidate(["/a"])

        assert cloudfront_client.create_invalidation.call_count == 5
        delays = [c.args[0] for c in mock_sleep.call_args_list]
        assert len(delays) == 4
        assert delays == sorted(delays)
        assert delays[0] >= 1

    def test_other_error_not_retried(self, controller, cloudfront_client, client_error):
        cloudfront_client.create_invalidation.side_effect = client_error(
            "AccessDenied", "nope"
        )
        with patch("pys3sync.sync.cloudfront.time.sleep") as mock_sleep:
            with pytest.raises(S3SyncInvalidationError):
                controller.invalidate(["/a"])
        assert cloudfront_client.create_invalidation.call_count == 1
        mock_sleep.assert_not_called()

    def test_verbose_swallows_failure(
        self, options, controller, cloudfront_client, client_error, mock_output
    ):
        """Test verbose mode logs the failure and keeps going."""
        options.verbose = True
        options.cloudfront_invalidation_batch_size = 1
        cloudfront_client.create_invalidation.side_effect = [
            client_error("AccessDenied", "nope"),
            {"Invalidation": {"Id": "I2"}},
        ]
        assert controller.invalidate(["/a", "/b"]) == ["I2"]
        mock_output.error.assert_called_once()


class TestWait:
    """Tests for waiting on invalidations."""

    def test_wait(self, options, controller, cloudfront_client):
        options.cloudfront_wait = True
        waiter = cloudfront_client.get_waiter.return_value
        controller.invalidate(["/a"])
        cloudfront_client.get_waiter.assert_called_once_with("invalidation_completed")
        waiter.wait.assert_called_once_with(
            DistributionId="E123",
            Id="I123",
            WaiterConfig={"Delay": 60, "MaxAttempts": 30},
        )

    def test_wait_timeout_is_warning(self, options, controller, cloudfront_client, mock_output):
        """Test a waiter timeout does not fail the run."""
        options.cloudfront_wait = True
        waiter = cloudfront_client.get_waiter.return_value
        waiter.wait.side_effect = WaiterError(
            name="InvalidationCompleted",
            reason="Max attempts exceeded",
            last_response={},
        )
        assert controller.invalidate(["/a"]) == ["I123"]
        assert mock_output.warning.called


class TestInvalidationPathSet:
    """Tests for the shared path collection."""

    def test_concurrent_adds(self):
        """Test paths added from many threads are all kept once."""
        paths = InvalidationPathSet()
        names = [f"p{i % 250}.html" for i in range(2000)]
        with ThreadPoolExecutor(max_workers=8) as executor:
            list(executor.map(paths.add, names))
        assert len(paths) == 250
        assert "/p0.html" in paths
        assert paths.snapshot() == sorted(f"/p{i}.html" for i in range(250))
