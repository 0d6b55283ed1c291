from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError, ReadTimeoutError

from shared.aws_helpers import CloudFrontHelper
from shared.errors import (
    CDNInvalidationError,
    InvalidPathsError,
    ProviderTimeoutError,
    RateLimitedError,
)


def client_error(code, message="error"):
    return ClientError({"Error": {"Code": code, "Message": message}}, "CreateInvalidation")


@pytest.fixture
def cloudfront():
    helper = CloudFrontHelper(region_name="us-east-1", timeout_seconds=1)
    helper.client = MagicMock()
    return helper


def test_create_invalidation_sends_encoded_paths(cloudfront):
    cloudfront.client.create_invalidation.return_value = {"Invalidation": {"Id": "I2J0I21PCUYOIK"}}

    invalidation_id = cloudfront.create_invalidation("E2EXAMPLE", ["/images/my photo.jpg", "/storage/*"])

    assert invalidation_id == "I2J0I21PCUYOIK"
    kwargs = cloudfront.client.create_invalidation.call_args.kwargs
    assert kwargs["DistributionId"] == "E2EXAMPLE"
    assert kwargs["InvalidationBatch"]["Paths"] == {
        "Quantity": 2,
        "Items": ["/images/my%20photo.jpg", "/storage/*"],
    }
    assert kwargs["InvalidationBatch"]["CallerReference"]


def test_caller_reference_is_unique_per_call(cloudfront):
    cloudfront.client.create_invalidation.return_value = {"Invalidation": {"Id": "I1"}}

    cloudfront.create_invalidation("E2EXAMPLE", ["/a"])
    cloudfront.create_invalidation("E2EXAMPLE", ["/a"])

    references = [
        call.kwargs["InvalidationBatch"]["CallerReference"]
        for call in cloudfront.client.create_invalidation.call_args_list
    ]
    assert references[0] != references[1]


@pytest.mark.parametrize("code", ["Throttling", "TooManyInvalidationsInProgress"])
def test_throttling_maps_to_rate_limited(cloudfront, code):
    cloudfront.client.create_invalidation.side_effect = client_error(code)

    with pytest.raises(RateLimitedError):
        cloudfront.create_invalidation("E2EXAMPLE", ["/a"])


def test_invalid_argument_names_offending_path(cloudfront):
    cloudfront.client.create_invalidation.side_effect = client_error(
        "InvalidArgument", "Your request contains an invalid path: /b<"
    )

    with pytest.raises(InvalidPathsError) as excinfo:
        cloudfront.create_invalidation("E2EXAMPLE", ["/a", "/b<"])

    assert excinfo.value.failed_paths == {"/b<"}
    assert excinfo.value.invalidation_id is None


def test_unattributed_rejection_reports_every_path(cloudfront):
    cloudfront.client.create_invalidation.side_effect = client_error("BatchTooLarge", "Too many paths")

    with pytest.raises(InvalidPathsError) as excinfo:
        cloudfront.create_invalidation("E2EXAMPLE", ["/a", "/b"])

    assert excinfo.value.failed_paths == {"/a", "/b"}


@pytest.mark.parametrize(
    "error",
    [
        ReadTimeoutError(endpoint_url="https://cloudfront.amazonaws.com"),
        EndpointConnectionError(endpoint_url="https://cloudfront.amazonaws.com"),
    ],
)
def test_timeouts_map_to_provider_timeout(cloudfront, error):
    cloudfront.client.create_invalidation.side_effect = error

    with pytest.raises(ProviderTimeoutError):
        cloudfront.create_invalidation("E2EXAMPLE", ["/a"])


def test_other_client_errors_are_transient_provider_errors(cloudfront):
    cloudfront.client.create_invalidation.side_effect = client_error("AccessDenied")

    with pytest.raises(CDNInvalidationError) as excinfo:
        cloudfront.create_invalidation("E2EXAMPLE", ["/a"])

    assert not isinstance(excinfo.value, RateLimitedError)


def test_count_in_progress(cloudfront):
    paginator = MagicMock()
    paginator.paginate.return_value = [
        {"InvalidationList": {"Items": [{"Id": "1", "Status": "InProgress"}, {"Id": "2", "Status": "Completed"}]}},
        {"InvalidationList": {"Items": [{"Id": "3", "Status": "InProgress"}]}},
        {"InvalidationList": {"Quantity": 0}},
    ]
    cloudfront.client.get_paginator.return_value = paginator

    assert cloudfront.count_in_progress("E2EXAMPLE") == 2
    paginator.paginate.assert_called_once_with(DistributionId="E2EXAMPLE")


def test_rejection_does_not_blame_paths_that_are_prefixes_of_the_named_one(cloudfront):
    cloudfront.client.create_invalidation.side_effect = client_error(
        "InvalidArgument", "Your request contains an invalid path: /img/a.png<"
    )

    with pytest.raises(InvalidPathsError) as excinfo:
        cloudfront.create_invalidation("E2EXAMPLE", ["/img/a.png<", "/img", "/", "/other"])

    assert excinfo.value.failed_paths == {"/img/a.png<"}


def test_rejection_matches_encoded_path_in_quotes(cloudfront):
    cloudfront.client.create_invalidation.side_effect = client_error(
        "InvalidArgument", "Invalid path '/my%20file', check the request"
    )

    with pytest.raises(InvalidPathsError) as excinfo:
        cloudfront.create_invalidation("E2EXAMPLE", ["/my file", "/my"])

    assert excinfo.value.failed_paths == {"/my file"}
