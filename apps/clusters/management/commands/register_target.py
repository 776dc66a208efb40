"""
Management command to register (or update) a deployment target.

Usage:
    # Register a target using the local (no-op) drivers
    python manage.py register_target prod-eu payments api

    # Register with an image repository and pipeline config from a file
    python manage.py register_target prod-eu payments api \\
        --repository registry.example.com/payments/api \\
        --config-file pipeline.json

    # Deactivate a target
    python manage.py register_target prod-eu payments api --inactive
"""

import json

from django.core.management.base import BaseCommand, CommandError

from apps.clusters.models import STAGE_CONFIG_KEYS, DeploymentTarget


class Command(BaseCommand):
    help = "Register or update a deployment target (cluster/namespace/workload)."

    def add_arguments(self, parser):
        parser.add_argument("cluster", type=str)
        parser.add_argument("namespace", type=str)
        parser.add_argument("workload", type=str)
        parser.add_argument(
            "--repository",
            type=str,
            help="Image repository for artifacts deployed to this target",
        )
        parser.add_argument(
            "--config",
            type=str,
            help="Pipeline config as a JSON string",
        )
        parser.add_argument(
            "--config-file",
            type=str,
            help="Path to a JSON file with the pipeline config",
        )
        parser.add_argument(
            "--inactive",
            action="store_true",
            help="Mark the target inactive (new runs are rejected)",
        )

    def handle(self, *args, **options):
        pipeline_config = self._load_config(options)

        defaults = {"is_active": not options["inactive"]}
        if options["repository"] is not None:
            defaults["repository"] = options["repository"]
        if pipeline_config is not None:
            defaults["pipeline_config"] = pipeline_config

        target, created = DeploymentTarget.objects.update_or_create(
            cluster=options["cluster"],
            namespace=options["namespace"],
            workload=options["workload"],
            defaults=defaults,
        )

        verb = "Registered" if created else "Updated"
        self.stdout.write(self.style.SUCCESS(f"{verb} target {target.key}"))

    def _load_config(self, options) -> dict | None:
        raw = None
        if options["config"]:
            raw = options["config"]
        elif options["config_file"]:
            try:
                with open(options["config_file"]) as f:
                    raw = f.read()
            except FileNotFoundError:
                raise CommandError(f"File not found: {options['config_file']}")

        if raw is None:
            return None

        try:
            config = json.loads(raw)
        except json.JSONDecodeError as e:
            raise CommandError(f"Invalid JSON config: {e}")

        if not isinstance(config, dict):
            raise CommandError("Pipeline config must be a JSON object")

        unknown = set(config) - set(STAGE_CONFIG_KEYS)
        if unknown:
            raise CommandError(
                f"Unknown stage(s) in config: {', '.join(sorted(unknown))}. "
                f"Expected: {', '.join(STAGE_CONFIG_KEYS)}"
            )
        return config
