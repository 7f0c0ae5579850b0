import json
from pathlib import Path

from django.core.management.base import BaseCommand, CommandError

from core.exceptions import ValidationError
from pricing.serializers import validate_rate_config
from pricing.services.rate_table import current_rate_table, publish_rates

# Starter rate card for development installs.
SAMPLE_RATES = {
    "categories": {
        "general": {"name": "General Furniture", "description": "Standard items", "weightRate": 22, "volumeRate": 125},
        "special_a": {"name": "Special Furniture A", "description": "Fragile or bulky", "weightRate": 32, "volumeRate": 184},
        "special_b": {"name": "Special Furniture B", "description": "Stone and marble", "weightRate": 40, "volumeRate": 208},
        "special_c": {"name": "Special Furniture C", "description": "Appliances", "weightRate": 50, "volumeRate": 251},
    },
    "constants": {
        "VOLUME_DIVISOR": 28317,
        "CBM_TO_CAI_FACTOR": "35.3",
        "MINIMUM_CHARGE": 2000,
        "OVERSIZED_LIMIT": 300,
        "OVERSIZED_FEE": 800,
        "OVERWEIGHT_LIMIT": 100,
        "OVERWEIGHT_FEE": 800,
    },
}


class Command(BaseCommand):
    help = "Publish a rates configuration (from a JSON file, or the built-in sample) as the next rate table version."

    def add_arguments(self, parser):
        parser.add_argument("--file", type=str, help="Path to a JSON file with 'categories' and 'constants'")
        parser.add_argument("--dry-run", action="store_true", help="Validate only; do not publish")

    def handle(self, *args, **options):
        path = options.get("file")
        if path:
            try:
                config = json.loads(Path(path).read_text(encoding="utf-8"))
            except FileNotFoundError:
                raise CommandError(f"Rates file not found: {path}")
            except json.JSONDecodeError as e:
                raise CommandError(f"Invalid JSON in {path}: {e}")
        else:
            config = SAMPLE_RATES

        if options["dry_run"]:
            try:
                validate_rate_config(config)
            except ValidationError as e:
                raise CommandError(str(e))
            self.stdout.write(self.style.SUCCESS("Rates configuration is valid."))
            return

        try:
            table = publish_rates(config, description=f"Seeded from {path or 'sample rates'}")
        except ValidationError as e:
            raise CommandError(str(e))

        self.stdout.write(self.style.SUCCESS(
            f"Published rate table v{table.version} with {len(table.categories)} categories."
        ))
        active = current_rate_table()
        self.stdout.write(f"Active rate table: v{active.version}")
