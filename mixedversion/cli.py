from argparse import ArgumentParser
from argparse import Namespace
from argparse import RawTextHelpFormatter
from pathlib import Path
from typing import List, Optional

import sys

from mixedversion.config import UpgradeSpec, load_spec
from mixedversion.errors import MixedVersionError
from mixedversion.log import log, set_verbose
from mixedversion.perturb import generate_seed
from mixedversion.planner import build_plan
from mixedversion.render import render

EXIT_OK = 0
EXIT_INVALID_SPEC = 1


def _spec_from_arguments(arguments: Namespace) -> UpgradeSpec:
    spec = load_spec(arguments.spec)

    if arguments.nodes is not None:
        spec = spec.with_nodes(arguments.nodes)

    seed = arguments.seed
    if seed is None:
        seed = spec.seed if spec.seed is not None else generate_seed()
    return spec.with_seed(seed)


def command_plan(arguments: Namespace) -> int:
    spec = _spec_from_arguments(arguments)
    transcript = render(build_plan(spec))

    if arguments.output is None:
        sys.stdout.write(transcript)
    else:
        arguments.output.write_text(transcript)
        log.info(f"plan with seed {spec.seed} written to {arguments.output}")

    return EXIT_OK


def command_validate(arguments: Namespace) -> int:
    spec = _spec_from_arguments(arguments)
    plan = build_plan(spec)
    print(f"spec is valid: {len(plan.transitions)} upgrade(s), {len(plan)} steps with seed {plan.seed}")
    return EXIT_OK


def build_parser() -> ArgumentParser:
    arguments_parser = ArgumentParser(prog="mixedversion", formatter_class=RawTextHelpFormatter)
    arguments_parser.description = (
        "Generates plans of mixed-version upgrade tests.\n"
        "The same spec and seed always produce the same plan."
    )
    arguments_parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="log every planner decision",
    )

    subparsers = arguments_parser.add_subparsers(dest="command", required=True)

    for name, handler, help in [
        ("plan", command_plan, "render the plan of a spec as a tree transcript"),
        ("validate", command_validate, "check that a plan can be built from a spec"),
    ]:
        subparser = subparsers.add_parser(name, help=help, formatter_class=RawTextHelpFormatter)
        subparser.set_defaults(handler=handler)
        subparser.add_argument(
            "spec",
            type=Path,
            action="store",
            help="path to a YAML test spec",
        )
        subparser.add_argument(
            "--seed",
            type=int,
            action="store",
            default=None,
            help="seed for random decisions\noverrides the seed of the spec, generated if neither is given",
        )
        subparser.add_argument(
            "--nodes",
            type=int,
            action="store",
            default=None,
            help="number of nodes, overrides the spec",
        )

    subparsers.choices["plan"].add_argument(
        "-o", "--output",
        type=Path,
        action="store",
        default=None,
        help="write the transcript to a file instead of stdout",
    )

    return arguments_parser


def main(argv: Optional[List[str]] = None) -> int:
    program_arguments = build_parser().parse_args(argv)
    set_verbose(program_arguments.verbose)

    try:
        return program_arguments.handler(program_arguments)
    except MixedVersionError as e:
        log.error(f"invalid spec: {e}")
        return EXIT_INVALID_SPEC


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
