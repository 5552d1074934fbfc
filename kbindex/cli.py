"""
kbindex/cli.py
--------------
Command-line interface for the knowledge base indexer.

Usage:
    kbindex index                      # Index changed files
    kbindex index --force              # Re-index every file
    kbindex index --if-stale           # Only when files changed since last pass
    kbindex status                     # Index state and counts
    kbindex search "schema mismatch"   # Full-text search
    kbindex rule CR-1                  # Rule with linked VRs and incidents
    kbindex verification VR-BUILD      # Verification type
    kbindex incident 3                 # Incident by number
    kbindex schema users --column name # Known schema mismatches
    kbindex plan                       # List plans (or: kbindex plan NAME)
    kbindex plan --status pending      # Plans by implementation status
    kbindex command ship               # Command definition (or --keyword)
    kbindex pattern database --topic migrations
    kbindex graph cr CR-1 --depth 2    # Cross-reference neighbourhood
    kbindex correct --wrong ... --correction ... --rule ... [--cr CR-1]
    kbindex errors                     # Indexing error log
"""
import argparse
import logging
import sys
from datetime import datetime


logger = logging.getLogger(__name__)


def setup_logging(log_name: str = "kbindex", verbose: bool = False) -> None:
    """
    Configure console and file logging.

    Args:
        log_name: Log file prefix
        verbose: DEBUG instead of INFO
    """
    from kbindex.config import LOG_DIR

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y-%m-%d_%H%M%S")
        log_file = LOG_DIR / f"{log_name}_{timestamp}.log"
        handlers.insert(0, logging.FileHandler(log_file, encoding="utf-8"))
    except OSError as e:
        log_file = None
        print(f"Cannot write logs to {LOG_DIR}: {e}", file=sys.stderr)

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s | %(levelname)-8s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
        force=True,  # Override any existing config
    )

    if log_file:
        logger.debug(f"Logging to: {log_file}")


def _open(args):
    """Knowledge paths and an initialized connection for the selected root."""
    from kbindex.config import get_knowledge_paths
    from sqlite.connection import init_db

    paths = get_knowledge_paths(args.root)
    return paths, init_db(paths.db_path)


def _preview(text: str, limit: int = 300) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def cmd_index(args):
    """Index the knowledge corpus."""
    from indexing.indexer import index_all_knowledge, index_if_stale

    paths, conn = _open(args)
    try:
        if args.if_stale and not args.force:
            stats = index_if_stale(conn, paths)
        else:
            stats = index_all_knowledge(conn, paths, force=args.force)
    finally:
        conn.close()

    print(f"\nIndex complete:")
    print(f"  Files indexed:  {stats['files_indexed']}")
    print(f"  Files skipped:  {stats['files_skipped']}")
    print(f"  Files removed:  {stats['files_removed']}")
    print(f"  Chunks created: {stats['chunks_created']}")
    print(f"  Edges created:  {stats['edges_created']}")
    print(f"  Failures:       {stats['failures']}")

    if stats["failures"]:
        sys.exit(1)


def cmd_status(args):
    """Show index state."""
    from indexing.staleness import is_knowledge_stale
    from sqlite.queries import get_knowledge_stats, get_latest_run, get_meta

    paths, conn = _open(args)
    try:
        stats = get_knowledge_stats(conn)
        latest_run = get_latest_run(conn)
        last_index = get_meta(conn, "last_index_time")
        stale = is_knowledge_stale(conn, paths)
    finally:
        conn.close()

    print("Knowledge Index Status")
    print("=" * 50)
    print(f"Project:   {paths.project_root}")
    print(f"Database:  {paths.db_path}")
    print(f"Last pass: {last_index or 'never'}")
    print(f"Stale:     {'yes' if stale else 'no'}")
    if latest_run:
        print(f"Latest run: #{latest_run['id']} ({latest_run['run_type']}) - {latest_run['status']}")
    print()
    print("Contents:")
    for key in ("documents", "chunks", "rules", "verifications", "incidents",
                "schema_mismatches", "corrections", "edges"):
        print(f"  {key:<18} {stats[key]:>6,}")

    if stats["by_category"]:
        print()
        print("Documents by category:")
        for category, count in sorted(stats["by_category"].items()):
            print(f"  {category:<18} {count:>6,}")


def cmd_search(args):
    """Full-text search."""
    from retrieval.search import search_knowledge

    _, conn = _open(args)
    try:
        results = search_knowledge(
            conn, args.query, category=args.category, chunk_type=args.type, limit=args.limit
        )
    finally:
        conn.close()

    if not results:
        print(f'No matches for "{args.query}".')
        return

    print(f'Found {len(results)} result(s) for "{args.query}":')
    print("=" * 70)
    for r in results:
        print(f"\n{r['heading'] or r['title']} [{r['chunk_type']}]")
        print(f"  {r['file_path']} ({r['category']})")
        print(f"  {_preview(r['content'])}")


def cmd_rule(args):
    """Show a rule, or rules matching a keyword."""
    from retrieval.lookup import find_rules, get_rule

    _, conn = _open(args)
    try:
        if args.keyword:
            rules = find_rules(conn, args.rule_id)
            rule = None
        else:
            rule = get_rule(conn, args.rule_id)
    finally:
        conn.close()

    if args.keyword:
        print(f'Rules matching "{args.rule_id}" ({len(rules)} found)')
        for r in rules:
            print(f"  {r['rule_id']:<8} {r['rule_text']} ({r['vr_type'] or 'N/A'})")
        return

    if rule is None:
        print(f"Rule {args.rule_id} not found.")
        sys.exit(1)

    print(f"{rule['rule_id']}: {rule['rule_text']}")
    print("=" * 70)
    print(f"  Verification: {rule['vr_type'] or 'N/A'}")
    print(f"  Reference:    {rule['reference_path'] or 'N/A'}")
    print(f"  Severity:     {rule['severity'] or 'HIGH'}")
    for vr in rule["verifications"]:
        print(f"\n  {vr['vr_type']}: {vr['command']}")
        if vr["expected"]:
            print(f"    Expected: {vr['expected']}")
    if rule["incidents"]:
        print("\n  Related incidents:")
        for inc in rule["incidents"]:
            print(f"    #{inc['incident_num']} ({inc['date'] or '?'}): {inc['description'] or inc['title'] or ''}")
    if rule["corrections"]:
        print("\n  Corrections:")
        for c in rule["corrections"]:
            print(f"    {c['date']} - {c['title']}")


def cmd_verification(args):
    """Show a verification type."""
    from retrieval.lookup import get_verification

    _, conn = _open(args)
    try:
        vr = get_verification(conn, args.vr_type)
    finally:
        conn.close()

    if vr is None:
        print(f"Verification type {args.vr_type} not found.")
        sys.exit(1)

    print(vr["vr_type"])
    print("=" * 70)
    print(f"  Command:  {vr['command']}")
    for label, key in (("Expected", "expected"), ("Use when", "use_when"),
                       ("Catches", "catches"), ("Category", "category")):
        if vr[key]:
            print(f"  {label + ':':<9} {vr[key]}")
    if vr["rules"]:
        print("\n  Required by: " + ", ".join(r["rule_id"] for r in vr["rules"]))


def cmd_incident(args):
    """Show an incident."""
    from retrieval.lookup import get_incident

    _, conn = _open(args)
    try:
        incident = get_incident(conn, args.incident_num)
    finally:
        conn.close()

    if incident is None:
        print(f"Incident #{args.incident_num} not found.")
        sys.exit(1)

    title = f": {incident['title']}" if incident["title"] else ""
    print(f"Incident #{incident['incident_num']}{title}")
    print("=" * 70)
    for label, key in (("Date", "date"), ("Type", "type"), ("Description", "description"),
                       ("Root cause", "root_cause"), ("Prevention", "prevention"),
                       ("CR added", "cr_added"), ("User quote", "user_quote")):
        if incident[key]:
            print(f"  {label + ':':<12} {incident[key]}")
    for rule in incident["rules"]:
        print(f"  -> {rule['rule_id']}: {rule['rule_text']}")


def cmd_schema(args):
    """Show known schema mismatches."""
    from retrieval.lookup import check_schema

    _, conn = _open(args)
    try:
        mismatches = check_schema(conn, args.table, args.column)
    finally:
        conn.close()

    if not mismatches:
        print("No known schema mismatches.")
        return
    for m in mismatches:
        if m["wrong_column"]:
            print(f"  {m['table_name']}.{m['wrong_column']} -> {m['correct_column']}")
        if m["note"]:
            print(f"    {m['note']}")


def cmd_plan(args):
    """List plans or show one."""
    from retrieval.lookup import find_plans, get_plan

    _, conn = _open(args)
    try:
        if args.name:
            plan = get_plan(conn, args.name)
            plans = []
        else:
            plan = None
            plans = find_plans(conn, keyword=args.keyword, file=args.file, status=args.status)
    finally:
        conn.close()

    if not args.name:
        print(f"Plans ({len(plans)} found)")
        for p in plans:
            print(f"  {p['title']} ({p['file_path']})")
        return

    if plan is None:
        print(f'Plan "{args.name}" not found.')
        sys.exit(1)

    print(f"Plan: {plan['title']}")
    print("=" * 70)
    print(f"  File: {plan['file_path']}")
    if plan["description"]:
        print(f"  {plan['description']}")
    if plan["items"]:
        print(f"\n  Items ({len(plan['items'])}):")
        for item in plan["items"]:
            print(f"    {item['item_id']}: {item['title']}")
    if plan["status"]:
        print(f"\n{plan['status']}")
    if plan["file_refs"]:
        print("\n  Referenced files:")
        for ref in plan["file_refs"]:
            print(f"    {ref}")


def cmd_command(args):
    """Show one command definition or list commands."""
    from retrieval.lookup import find_commands, get_command

    _, conn = _open(args)
    try:
        if args.name:
            command = get_command(conn, args.name)
            commands = []
        else:
            command = None
            commands = find_commands(conn, keyword=args.keyword)
    finally:
        conn.close()

    if not args.name:
        print(f"Commands ({len(commands)} found)")
        for c in commands:
            suffix = f": {c['description']}" if c["description"] else ""
            print(f"  {c['name']} ({c['file_path']}){suffix}")
        return

    if command is None:
        print(f'Command "{args.name}" not found.')
        sys.exit(1)

    print(f"Command: {command['name']}")
    print("=" * 70)
    print(f"  File: {command['file_path']}")
    if command["description"]:
        print(f"  {command['description']}")
    print(f"\n{command['content']}")


def cmd_pattern(args):
    """Show pattern guidance for a domain."""
    from retrieval.lookup import find_patterns

    _, conn = _open(args)
    try:
        guidance = find_patterns(conn, args.domain, args.topic)
    finally:
        conn.close()

    title = f"{args.domain} / {args.topic}" if args.topic else args.domain
    print(f"Pattern guidance: {title}")
    print("=" * 70)
    if guidance["fallback"]:
        print(f'  No pattern file for "{args.domain}"; showing corpus search results.')
    for section in guidance["sections"]:
        print(f"\n  [{section['chunk_type']}] {section['heading'] or '(section)'}  ({section['file_path']})")
        print(f"    {_preview(section['content'], 300)}")
    if not guidance["sections"]:
        print("  Nothing found.")


def cmd_graph(args):
    """Traverse the cross-reference graph."""
    from retrieval.graph import clamp_depth, traverse_graph

    _, conn = _open(args)
    try:
        nodes = traverse_graph(conn, args.entity_type, args.entity_id, args.depth)
    finally:
        conn.close()

    print(f"Knowledge graph: {args.entity_type}/{args.entity_id} (depth {clamp_depth(args.depth)})")
    print("=" * 70)
    for node in nodes[1:]:
        arrow = "->" if node["direction"] == "out" else "<-"
        indent = "  " * node["depth"]
        print(f"{indent}{node['via_type']}/{node['via_id']} {arrow}[{node['edge_type']}] "
              f"{node['entity_type']}/{node['entity_id']}")
    print(f"\nTotal connected entities: {len(nodes) - 1}")


def cmd_correct(args):
    """Record a correction."""
    from indexing.indexer import record_correction

    paths, conn = _open(args)
    try:
        log_path = record_correction(
            conn, args.wrong, args.correction, args.rule, cr_rule=args.cr, paths=paths
        )
    finally:
        conn.close()

    print("Correction recorded:")
    print(f"  Wrong: {args.wrong}")
    print(f"  Rule:  {args.rule}")
    if args.cr:
        print(f"  CR:    {args.cr}")
    print(f"  File:  {log_path}")


def cmd_errors(args):
    """Show the indexing error log."""
    from sqlite.queries import get_run_errors

    _, conn = _open(args)
    try:
        errors = get_run_errors(conn, args.run_id)
    finally:
        conn.close()

    if not errors:
        print("No errors found.")
        return

    title = f"Index Errors (Run #{args.run_id})" if args.run_id else "All Index Errors"
    print(f"\n{title}:")
    print("=" * 80)
    for error in errors[:50]:  # Limit to 50
        print(f"  {error['file_path']:<40} {error['error_type']:<12} {(error['error_message'] or '')[:30]}")
    if len(errors) > 50:
        print(f"\n... and {len(errors) - 50} more errors")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kbindex",
        description="kbindex - markdown knowledge base indexer",
    )
    parser.add_argument("--root", help="Project root to index (default: KB_PROJECT_ROOT or cwd)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # index command
    index_parser = subparsers.add_parser("index", help="Index knowledge files")
    index_parser.add_argument("--force", action="store_true", help="Re-index unchanged files too")
    index_parser.add_argument("--if-stale", action="store_true", help="Skip when nothing changed")
    index_parser.set_defaults(func=cmd_index)

    # status command
    status_parser = subparsers.add_parser("status", help="Show index state")
    status_parser.set_defaults(func=cmd_status)

    # search command
    search_parser = subparsers.add_parser("search", help="Full-text search")
    search_parser.add_argument("query", help="Search terms")
    search_parser.add_argument("--category", help="Filter by document category")
    search_parser.add_argument("--type", help="Filter by chunk type")
    search_parser.add_argument("--limit", type=int, default=10, help="Max results (default: 10, max: 50)")
    search_parser.set_defaults(func=cmd_search)

    # rule command
    rule_parser = subparsers.add_parser("rule", help="Look up a canonical rule")
    rule_parser.add_argument("rule_id", help="Rule id (CR-1), or keyword with --keyword")
    rule_parser.add_argument("--keyword", action="store_true", help="Search rule text instead")
    rule_parser.set_defaults(func=cmd_rule)

    # verification command
    vr_parser = subparsers.add_parser("verification", help="Look up a verification type")
    vr_parser.add_argument("vr_type", help="Verification type (VR-BUILD)")
    vr_parser.set_defaults(func=cmd_verification)

    # incident command
    incident_parser = subparsers.add_parser("incident", help="Look up an incident")
    incident_parser.add_argument("incident_num", type=int, help="Incident number")
    incident_parser.set_defaults(func=cmd_incident)

    # schema command
    schema_parser = subparsers.add_parser("schema", help="Known schema mismatches")
    schema_parser.add_argument("table", nargs="?", help="Table name")
    schema_parser.add_argument("--column", help="Column name to check")
    schema_parser.set_defaults(func=cmd_schema)

    # plan command
    plan_parser = subparsers.add_parser("plan", help="List or show plan documents")
    plan_parser.add_argument("name", nargs="?", help="Plan file name (partial)")
    plan_parser.add_argument("--keyword", help="Full-text match within plans")
    plan_parser.add_argument("--file", help="Plans referencing this source file")
    plan_parser.add_argument("--status", help="Plans whose implementation status mentions this text")
    plan_parser.set_defaults(func=cmd_plan)

    # command command
    command_parser = subparsers.add_parser("command", help="Look up or list command definitions")
    command_parser.add_argument("name", nargs="?", help="Command name (file stem) or title")
    command_parser.add_argument("--keyword", help="Commands mentioning this text")
    command_parser.set_defaults(func=cmd_command)

    # pattern command
    pattern_parser = subparsers.add_parser("pattern", help="Pattern guidance for a domain")
    pattern_parser.add_argument("domain", help="Domain (database, auth, ...)")
    pattern_parser.add_argument("--topic", help="Narrow to a topic within the domain")
    pattern_parser.set_defaults(func=cmd_pattern)

    # graph command
    graph_parser = subparsers.add_parser("graph", help="Traverse the cross-reference graph")
    graph_parser.add_argument("entity_type", help="cr, vr, incident, correction, plan_item, chunk, pattern")
    graph_parser.add_argument("entity_id", help="Entity identifier")
    graph_parser.add_argument("--depth", type=int, default=1, help="Hops to follow (1-3)")
    graph_parser.set_defaults(func=cmd_graph)

    # correct command
    correct_parser = subparsers.add_parser("correct", help="Record a correction")
    correct_parser.add_argument("--wrong", required=True, help="What was done wrong")
    correct_parser.add_argument("--correction", required=True, help="What should have been done")
    correct_parser.add_argument("--rule", required=True, help="Rule to follow from now on")
    correct_parser.add_argument("--cr", help="Canonical rule this enforces (CR-N)")
    correct_parser.set_defaults(func=cmd_correct)

    # errors command
    errors_parser = subparsers.add_parser("errors", help="Indexing error log")
    errors_parser.add_argument("--run-id", type=int, help="Filter by run ID")
    errors_parser.set_defaults(func=cmd_errors)

    return parser


def main(argv=None):
    """Main entry point for CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    setup_logging(f"index_{args.command}", verbose=args.verbose)
    args.func(args)


if __name__ == "__main__":
    main()
