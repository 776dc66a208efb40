"""Tests for deploy drivers."""

from unittest.mock import patch

import pytest

from apps.clusters.drivers import get_deploy_driver
from apps.clusters.drivers.kubectl import KubectlDeployDriver, classify_kubectl_failure
from apps.clusters.drivers.local import LocalDeployDriver
from apps.clusters.drivers.webhook import WebhookDeployDriver
from apps.orchestration.dtos import ArtifactInfo, StageContext
from apps.orchestration.errors import PermanentAdapterError, TransientAdapterError
from apps.orchestration.utils.httpclient import HttpResponse
from apps.orchestration.utils.process import CommandResult

DIGEST = "sha256:" + "cd" * 32
REPOSITORY = "registry.example.com/shop/checkout"


def _ctx(config=None, artifact=True):
    return StageContext(
        trace_id="trace-1",
        run_id="run-1",
        stage="deploy",
        source_ref="3f2c9a1b7e5d",
        cluster="prod-eu",
        namespace="web",
        workload="checkout",
        repository=REPOSITORY,
        config=config or {},
        artifact=ArtifactInfo(digest=DIGEST, repository=REPOSITORY, tag="3f2c9a1b7e5d") if artifact else None,
        timeout=30.0,
    )


class TestRegistry:
    def test_get_deploy_driver(self):
        assert isinstance(get_deploy_driver(), LocalDeployDriver)
        assert isinstance(get_deploy_driver("kubectl"), KubectlDeployDriver)

    def test_unknown_driver(self):
        with pytest.raises(ValueError, match="Unknown deploy driver"):
            get_deploy_driver("helm")


class TestLocalDeployDriver:
    def test_accepts(self):
        result = LocalDeployDriver().deploy(_ctx())
        assert result.accepted
        assert result.revision == DIGEST

    def test_requires_artifact(self):
        with pytest.raises(PermanentAdapterError):
            LocalDeployDriver().deploy(_ctx(artifact=False))


class TestKubectlDeployDriver:
    def test_set_image_invocation_pins_digest(self):
        argv, stdin = KubectlDeployDriver().build_invocation(_ctx({"container": "app"}))
        assert argv == [
            "kubectl",
            "--context",
            "prod-eu",
            "--namespace",
            "web",
            "set",
            "image",
            "deployment/checkout",
            f"app={REPOSITORY}@{DIGEST}",
        ]
        assert stdin is None

    def test_manifest_is_templated_not_parsed(self):
        manifest = "spec:\n  image: ${image_ref}\n  labels: {digest: ${digest}}\n  other: ${unknown}"
        argv, stdin = KubectlDeployDriver().build_invocation(_ctx({"manifest": manifest, "context": "eu-admin"}))
        assert argv[-3:] == ["apply", "-f", "-"]
        assert argv[2] == "eu-admin"
        assert f"image: {REPOSITORY}@{DIGEST}" in stdin
        assert "${unknown}" in stdin

    @patch("apps.clusters.drivers.kubectl.run_command")
    def test_deploy_success(self, mock_run):
        mock_run.return_value = CommandResult(argv=["kubectl"], returncode=0, stdout="deployment.apps/checkout image updated")
        result = KubectlDeployDriver().deploy(_ctx())
        assert result.accepted
        assert "image updated" in result.detail
        assert mock_run.call_args.kwargs["timeout"] == 30.0

    @patch("apps.clusters.drivers.kubectl.run_command")
    def test_deploy_failure_classified(self, mock_run):
        mock_run.return_value = CommandResult(
            argv=["kubectl"], returncode=1, stderr="Unable to connect to the server: dial tcp: i/o timeout"
        )
        with pytest.raises(TransientAdapterError) as exc_info:
            KubectlDeployDriver().deploy(_ctx())
        assert exc_info.value.stage == "deploy"

        mock_run.return_value = CommandResult(
            argv=["kubectl"], returncode=1, stderr='deployments.apps "checkout" not found'
        )
        with pytest.raises(PermanentAdapterError):
            KubectlDeployDriver().deploy(_ctx())

    def test_invalid_manifest_config(self):
        with pytest.raises(PermanentAdapterError, match="Invalid configuration"):
            KubectlDeployDriver().deploy(_ctx({"manifest": {"not": "a string"}}))

    def test_classify_failure(self):
        assert isinstance(classify_kubectl_failure("Too Many Requests", 1), TransientAdapterError)
        assert isinstance(classify_kubectl_failure("forbidden", 1), PermanentAdapterError)


@patch("apps.clusters.drivers.webhook.httpclient.request")
class TestWebhookDeployDriver:
    config = {"url": "https://deployer.internal/apply", "headers": {"Authorization": "Bearer x"}}

    def test_posts_desired_state(self, mock_request):
        mock_request.return_value = HttpResponse(status=202, body='{"accepted": true, "revision": "r-17"}')

        result = WebhookDeployDriver().deploy(_ctx(self.config))

        assert result.accepted
        assert result.revision == "r-17"
        kwargs = mock_request.call_args.kwargs
        assert kwargs["payload"]["artifact"]["digest"] == DIGEST
        assert kwargs["payload"]["target"] == {"cluster": "prod-eu", "namespace": "web", "workload": "checkout"}
        assert kwargs["headers"]["Idempotency-Key"] == "run-1:deploy"
        assert kwargs["headers"]["Authorization"] == "Bearer x"

    def test_rejection_is_permanent(self, mock_request):
        mock_request.return_value = HttpResponse(status=200, body='{"accepted": false, "reason": "frozen"}')
        with pytest.raises(PermanentAdapterError, match="frozen"):
            WebhookDeployDriver().deploy(_ctx(self.config))

    def test_empty_body_accepted(self, mock_request):
        mock_request.return_value = HttpResponse(status=204)
        assert WebhookDeployDriver().deploy(_ctx(self.config)).revision == DIGEST

    def test_missing_url(self, mock_request):
        with pytest.raises(PermanentAdapterError, match="Invalid configuration"):
            WebhookDeployDriver().deploy(_ctx({}))
        mock_request.assert_not_called()
