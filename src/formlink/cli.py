import argparse
import asyncio
import json
import sys
from pathlib import Path

from .engine_class import LinkageEngine
from .expander_class import ArrayLinkageExpander
from .graph_class import DependencyGraph
from .linkage_class import LinkageConfig
from .loader import collect_array_paths, load_linkages, load_schema, load_values, parse_schema_linkages
from .store_class import FormStore


def _load_inputs(schema_path: Path, values_path: Path | None) -> tuple[dict[str, LinkageConfig], list[str], dict]:
    data = load_schema(schema_path)
    if "properties" in data:
        linkages = parse_schema_linkages(data)
        array_paths = collect_array_paths(data)
    else:
        linkages = load_linkages(schema_path)
        array_paths = []
    values = load_values(values_path) if values_path is not None else {}
    return linkages, array_paths, values


def _expanded_graph(linkages, array_paths, values) -> tuple[dict[str, LinkageConfig], DependencyGraph]:
    expanded = ArrayLinkageExpander(array_paths).expand(linkages, values)
    return expanded, DependencyGraph.from_linkages(expanded)


def main(argv: list[str] | None = None) -> None:
    """Entry point for the formlink command-line interface."""
    parser = argparse.ArgumentParser(prog="formlink", description="Form field linkage engine CLI.")
    subparsers = parser.add_subparsers(dest="command")

    check_parser = subparsers.add_parser("check", help="Parse a schema and report counts and cycles.")
    check_parser.add_argument("schema", type=Path, help="Schema file (YAML or JSON).")
    check_parser.add_argument("--values", type=Path, default=None, help="Form values file used for array expansion.")

    affected_parser = subparsers.add_parser("affected", help="List fields recomputed when FIELD changes.")
    affected_parser.add_argument("schema", type=Path, help="Schema file (YAML or JSON).")
    affected_parser.add_argument("field", help="Changed field path (e.g. contacts.0.type)")
    affected_parser.add_argument("--values", type=Path, default=None, help="Form values file used for array expansion.")

    evaluate_parser = subparsers.add_parser("evaluate", help="Evaluate every linkage and print results as JSON.")
    evaluate_parser.add_argument("schema", type=Path, help="Schema file (YAML or JSON).")
    evaluate_parser.add_argument("--values", type=Path, default=None, help="Form values file.")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    try:
        linkages, array_paths, values = _load_inputs(args.schema, args.values)
    except (OSError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        sys.exit(2)

    if args.command == "check":
        expanded, graph = _expanded_graph(linkages, array_paths, values)
        print(f"Declared linkages: {len(linkages)}")
        print(f"Expanded linkages: {len(expanded)}")
        print(f"Dependencies: {graph.edge_count}")
        validation = graph.validate()
        if not validation.is_valid:
            print(validation.error, file=sys.stderr)
            sys.exit(1)
        print("No circular dependencies")
        sys.exit(0)

    if args.command == "affected":
        _, graph = _expanded_graph(linkages, array_paths, values)
        affected = graph.get_affected_fields(args.field)
        if not affected:
            print("(none)")
        for field in affected:
            print(field)
        sys.exit(0)

    if args.command == "evaluate":
        # Functions are not loadable from files; only declarative effects apply.
        engine = LinkageEngine(FormStore(values), linkages, array_paths=array_paths)
        results = asyncio.run(engine.initialize())
        payload = {path: result.to_dict() for path, result in results.items()}
        print(json.dumps(payload, indent=2, sort_keys=True, default=str))
        sys.exit(0)

    sys.exit(1)


if __name__ == "__main__":
    main()
