"""EntityScope - entity resolution from web evidence

Simple CLI for resolving a person or organization and for narrowing a
registry search down to one match.
"""

import argparse
import asyncio
import json
import sys

from entityscope.agents.orchestrator import ResolutionOrchestrator
from entityscope.core.disambiguation.controller import SessionStatus
from entityscope.errors import ConfigurationError, TransientProviderError
from entityscope.models.schemas import RECORD_FIELDS, AggregatedRecord, Query
from entityscope.services.logger import configure_logging
from entityscope.tools.npi_registry import choice_label

DIMENSION_PROMPTS = {
    "region": "State (e.g. OH)",
    "locality": "City",
    "category": "Specialty",
}


def print_record(record: AggregatedRecord, *, as_json: bool = False) -> None:
    if as_json:
        print(record.model_dump_json(indent=2))
        return

    print(f"\n[*] {record.subject_name}")
    print(f"   Confidence: {record.confidence * 100:.1f}%")
    for field_name in RECORD_FIELDS:
        print(f"   {field_name.capitalize()}: {record.primary[field_name]}")
        others = record.alternates.get(field_name) or []
        if others:
            print(f"     also seen: {', '.join(others)}")
    for name, value in record.identifiers.items():
        print(f"   {name.upper()}: {value}")
    print(f"   Sources: {len(record.sources)}")
    for url in record.sources[:5]:
        print(f"     - {url}")
    if len(record.sources) > 5:
        print(f"     ... and {len(record.sources) - 5} more")


async def run_resolve(query: Query, *, verbose: bool = False, as_json: bool = False) -> None:
    """Resolve one entity and print the record."""
    print(f"Resolving: {query.name}")
    print("-" * 50)
    orchestrator = ResolutionOrchestrator(verbose=verbose)
    run = await orchestrator.run(query)
    if verbose:
        print(json.dumps(run.summary(), indent=2))
    print_record(run.record, as_json=as_json)


async def run_registry(first_name: str, last_name: str, *, verbose: bool = False, as_json: bool = False) -> None:
    """Narrow a registry search interactively until one match or a short list remains."""
    orchestrator = ResolutionOrchestrator(verbose=verbose)
    session = await orchestrator.start_disambiguation({"first_name": first_name, "last_name": last_name})
    print(f"Registry matches for {first_name} {last_name}: {session.result_count}")

    while not session.is_terminal:
        dimension = session.pending_dimension
        label = DIMENSION_PROMPTS.get(dimension, dimension)
        answer = input(f"{session.result_count} matches. {label} (Enter to skip): ").strip()
        if not answer:
            session = orchestrator.skip_dimension(session)
            continue
        try:
            session = await orchestrator.apply_filter(session, dimension, answer)
        except (ConfigurationError, TransientProviderError) as exc:
            print(f"[!] {exc}")
            continue
        print(f"   -> {session.result_count} matches")

    if session.status == SessionStatus.NOT_FOUND:
        print("\n[!] No registry match")
    elif session.status == SessionStatus.RESOLVED:
        print_record(orchestrator.commit(session), as_json=as_json)
    else:
        print(f"\n[~] {session.result_count} matches remain; top {len(session.choices)}:")
        for i, choice in enumerate(session.choices, 1):
            print(f"  {i}. {choice_label(choice)}")


def main():
    parser = argparse.ArgumentParser(description="EntityScope entity resolution")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log progress at INFO")
    parser.add_argument("--json", action="store_true", help="Print the record as JSON")
    subparsers = parser.add_subparsers(dest="command", required=True)

    resolve = subparsers.add_parser("resolve", help="Resolve an entity from web evidence")
    resolve.add_argument("--name", "-n", help="Entity name (prompted when omitted)")
    resolve.add_argument("--role", help="Role or specialty hint")
    resolve.add_argument("--institution", help="Institution hint")
    resolve.add_argument("--location", help="Location hint")
    resolve.add_argument("--handle", help="Known handle, e.g. an X username")

    registry = subparsers.add_parser("registry", help="Narrow an NPI registry search")
    registry.add_argument("--first-name", required=True)
    registry.add_argument("--last-name", required=True)

    args = parser.parse_args()
    configure_logging(level="INFO" if args.verbose else None)

    try:
        if args.command == "registry":
            asyncio.run(run_registry(args.first_name, args.last_name, verbose=args.verbose, as_json=args.json))
            return

        if args.name:
            query = Query(
                name=args.name,
                role=args.role,
                institution=args.institution,
                location=args.location,
                handle=args.handle,
            )
            asyncio.run(run_resolve(query, verbose=args.verbose, as_json=args.json))
            return

        while True:
            name = input("Name: ").strip()
            if not name:
                print("[!] A name is required")
                continue
            query = Query(
                name=name,
                role=input("Role or specialty (optional): ").strip() or None,
                institution=input("Institution (optional): ").strip() or None,
                location=input("Location (optional): ").strip() or None,
            )
            asyncio.run(run_resolve(query, verbose=args.verbose, as_json=args.json))
            again = input("\nResolve another? (y/n): ").strip().lower()
            if again not in ("y", "yes"):
                break
    except ConfigurationError as exc:
        print(f"[!] Configuration error: {exc}")
        sys.exit(2)
    except (KeyboardInterrupt, EOFError):
        print()


if __name__ == "__main__":
    main()
