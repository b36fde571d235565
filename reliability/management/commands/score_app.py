import json

from django.core.management.base import BaseCommand, CommandError

from reliability.engine import get_service


def format_count(value) -> str:
    """1234567 -> 1.2M, 3400 -> 3.4k"""
    if not value:
        return "0"
    if value >= 1_000_000:
        return f"{value / 1_000_000:.1f}M"
    if value >= 1_000:
        return f"{value / 1_000:.1f}k"
    return str(value)


class Command(BaseCommand):
    help = "Estimate the reliability score of an app from its store listings."

    def add_arguments(self, parser):
        parser.add_argument("name", help="App name as listed in the directory")
        parser.add_argument("--category", help="Directory category, e.g. Finance")
        parser.add_argument("--tagline", help="Short description of the app")
        parser.add_argument("--developer", help="Known developer name")
        parser.add_argument("--app-store-url", help="App Store link; skips the App Store search")
        parser.add_argument("--json", action="store_true", help="Print the full report as JSON")

    def handle(self, *args, **options):
        result = get_service().resolve_and_score(
            options["name"],
            category_hint=options.get("category"),
            tagline_hint=options.get("tagline"),
            developer_hint=options.get("developer"),
            app_store_url=options.get("app_store_url"),
        )
        if result is None:
            raise CommandError("Scoring was cancelled.")
        if not result:
            raise CommandError(f"'{options['name']}' not found: {result.reason}")

        if options["json"]:
            self.stdout.write(json.dumps(result.to_dict(), indent=2))
            return

        d = result.downloads
        self.stdout.write(self.style.SUCCESS(f"{result.app_name}: {result.card.score} ({result.card.grade})"))
        self.stdout.write(
            f"  Downloads: {format_count(d.total)} "
            f"(Android {format_count(d.android)}, iOS {format_count(d.ios)}) - {result.adoption_label}"
        )
        self.stdout.write(f"  Genre: {d.genre_used} [{d.genre_source}]")
        slope = "N/A" if result.growth_slope is None else f"{result.growth_slope:+.4f}/week"
        self.stdout.write(f"  Growth: {slope} - {result.growth_label}")
        for platform, identity in result.identities.items():
            c = identity.candidate
            self.stdout.write(f"  {platform}: {c.title} [{c.id}] {format_count(c.rating_count)} ratings")
        if result.partial:
            self.stdout.write(
                self.style.WARNING(f"  Partial: missing {', '.join(result.missing_platforms)}")
            )
