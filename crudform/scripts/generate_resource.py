from __future__ import annotations

import argparse

from crudform.services.resource_generator import ResourceGenerator, load_model


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Print form / show / grid declarations for a mapped model")
    parser.add_argument("model", help="Model to describe, as package.module:ClassName")
    parser.add_argument("--kind", choices=("form", "show", "grid"), default="form", help="Declarations to generate")
    args = parser.parse_args(argv)

    generator = ResourceGenerator(load_model(args.model))
    if args.kind == "show":
        output = generator.generate_show()
    elif args.kind == "grid":
        output = generator.generate_grid()
    else:
        output = generator.generate_form()
    print(output, end="")


if __name__ == "__main__":
    main()
