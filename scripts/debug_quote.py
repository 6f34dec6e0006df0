import argparse
import json
import logging
import sys
from pathlib import Path

# Add src to path
src_path = Path(__file__).parent.parent / 'src'
sys.path.insert(0, str(src_path))

from quote_engine.config.settings import get_settings
from quote_engine.engine import QuoteEngine, QuoteRequest
from quote_engine.services.catalog_service import CatalogService


def debug(answers_path: Path, services: list[str] = None, show_trace: bool = False):
    settings = get_settings()
    catalog = CatalogService(settings)
    engine = QuoteEngine.from_settings(settings)

    print(f"Loaded {len(engine.rules)} rules, {len(engine.services)} services (hash {engine.catalog_hash})")

    print("\nValidating rules...")
    earlier = set()
    for rule in engine.rules:
        result = catalog.validate_rule(rule, earlier)
        for err in result.errors:
            print(f"  ❌ {rule.rule_id}: {err}")
        for warn in result.warnings:
            print(f"  ⚠️  {rule.rule_id}: {warn}")
        earlier.add(rule.rule_id)

    answers = json.loads(answers_path.read_text(encoding='utf-8'))
    if services is None and isinstance(answers.get('services'), list):
        services = answers['services']

    print(f"\n--- Quote for {answers_path.name} (services: {services or 'all'}) ---")
    quote = engine.calculate(QuoteRequest(answers=answers, selected_services=services))

    print("\nComputed prices:")
    for price in quote.prices:
        print(f"  {price.rule_id:<32} {price.value:>10.2f}  {price.billing_frequency or '-'}")

    print("\nTotals:")
    for name, value in quote.totals.items():
        print(f"  {name:<32} {value:>10.2f}")

    print("\nServices:")
    for line in quote.services:
        print(f"  {line.title:<24} monthly {line.monthly_fee:>9.2f}  one-time {line.one_time_fee:>9.2f}  "
              f"annual {line.annual_price:>10.2f}")

    print(f"\nMonthly fees:  {quote.total_monthly_fees:.2f}")
    print(f"One-time fees: {quote.total_one_time_fees:.2f}")
    print(f"Annual total:  {quote.total_annual:.2f}")

    if quote.warnings:
        print("\nWarnings:")
        for warning in quote.warnings:
            print(f"  ⚠️  {warning}")

    if show_trace:
        print("\nTrace:")
        print(quote.get_trace_text())


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Price an answers file against the local catalogs")
    parser.add_argument('answers', nargs='?', type=Path,
                        default=src_path / 'quote_engine' / 'data' / 'sample_answers.json')
    parser.add_argument('--services', nargs='*', default=None, help="Service ids to price")
    parser.add_argument('--trace', action='store_true', help="Print the full evaluation trace")
    parser.add_argument('--verbose', action='store_true', help="Show engine debug logging")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)
    debug(args.answers, args.services, args.trace)
