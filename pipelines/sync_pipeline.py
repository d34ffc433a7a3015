"""KFP v2 pipeline — Scheduled knowledge-base sync.

A one-step pipeline meant to be attached to a KFP recurring run, e.g.
nightly, so the vector store follows upstream changes without anyone
hitting the HTTP trigger.

Compile
-------
    python -m pipelines.sync_pipeline --compile
"""

from kfp import compiler, dsl

from pipelines.components.sync import sync_sources


@dsl.pipeline(
    name="kb-sync-pipeline",
    description="Incrementally sync GitHub docs, the knowledge base and ticket history into the vector store.",
)
def sync_pipeline(scope: str = "all") -> None:
    """Run :func:`sync_sources` for *scope* (``repos`` | ``knowledge-base`` | ``all``)."""
    sync_sources(scope=scope)


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Knowledge-base sync pipeline")
    parser.add_argument(
        "--compile",
        action="store_true",
        help="Compile pipeline to YAML",
    )
    parser.add_argument(
        "--output",
        default="pipelines/compiled/sync_pipeline.yaml",
        help="Output path for compiled YAML",
    )
    args = parser.parse_args()

    if args.compile:
        compiler.Compiler().compile(sync_pipeline, args.output)
        print(f"Pipeline compiled → {args.output}")
