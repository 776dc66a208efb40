"""Tests for deployment targets and the register_target command."""

import json
from io import StringIO

import pytest
from django.core.management import call_command
from django.core.management.base import CommandError
from django.db import IntegrityError

from apps.clusters.models import DeploymentTarget


@pytest.mark.django_db
class TestDeploymentTarget:
    def test_key_and_lookup(self):
        target = DeploymentTarget.objects.create(cluster="prod-eu", namespace="web", workload="api")
        assert target.key == "prod-eu/web/api"
        assert str(target) == "prod-eu/web/api"
        assert DeploymentTarget.objects.get_by_key(" prod-eu / web / api ") == target

    @pytest.mark.parametrize("key", ["", "a/b", "a/b/c/d", "a//c"])
    def test_malformed_key(self, key):
        with pytest.raises(ValueError):
            DeploymentTarget.parse_key(key)

    def test_unknown_key(self):
        with pytest.raises(DeploymentTarget.DoesNotExist):
            DeploymentTarget.objects.get_by_key("a/b/c")

    def test_unique_target(self):
        DeploymentTarget.objects.create(cluster="c", namespace="n", workload="w")
        with pytest.raises(IntegrityError):
            DeploymentTarget.objects.create(cluster="c", namespace="n", workload="w")

    def test_stage_config(self):
        target = DeploymentTarget(
            cluster="c",
            namespace="n",
            workload="w",
            pipeline_config={"deploy": {"driver": "kubectl"}, "verify": "bogus"},
        )
        config = target.stage_config("deploy")
        config["driver"] = "changed"
        assert target.stage_config("deploy") == {"driver": "kubectl"}
        assert target.stage_config("verify") == {}
        assert target.stage_config("build") == {}


@pytest.mark.django_db
class TestRegisterTargetCommand:
    def _call(self, *args):
        out = StringIO()
        call_command("register_target", *args, stdout=out)
        return out.getvalue()

    def test_register_and_update(self):
        config = {"deploy": {"driver": "kubectl", "container": "app"}}
        output = self._call(
            "prod-eu", "web", "api", "--repository", "reg.example.com/web/api", "--config", json.dumps(config)
        )
        assert "Registered target prod-eu/web/api" in output

        target = DeploymentTarget.objects.get_by_key("prod-eu/web/api")
        assert target.repository == "reg.example.com/web/api"
        assert target.pipeline_config == config

        output = self._call("prod-eu", "web", "api", "--inactive")
        assert "Updated target" in output
        target.refresh_from_db()
        assert target.is_active is False
        # Options not given keep their stored values.
        assert target.pipeline_config == config

    def test_config_file(self, tmp_path):
        path = tmp_path / "pipeline.json"
        path.write_text(json.dumps({"build": {"driver": "local"}}))
        self._call("c", "n", "w", "--config-file", str(path))
        assert DeploymentTarget.objects.get().pipeline_config == {"build": {"driver": "local"}}

    @pytest.mark.parametrize(
        "config,message",
        [
            ("{nope", "Invalid JSON"),
            ("[1, 2]", "must be a JSON object"),
            ('{"rollout": {}}', "Unknown stage"),
        ],
    )
    def test_invalid_config(self, config, message):
        with pytest.raises(CommandError, match=message):
            self._call("c", "n", "w", "--config", config)
        assert not DeploymentTarget.objects.exists()

    def test_missing_config_file(self):
        with pytest.raises(CommandError, match="File not found"):
            self._call("c", "n", "w", "--config-file", "/nonexistent/pipeline.json")
