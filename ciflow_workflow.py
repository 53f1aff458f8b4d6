# ciflow_workflow.py
# Build-and-test pipeline: bootstrap the compiler once, hand it to the test
# shards and the other checks, gate on all of them.
from __future__ import annotations

from ciflow import gate, job, matrix, on_pull_request, on_push, sh, wf


def workflow():
    return wf(
        job(
            "bootstrap",
            sh("Build csources", "make -C csources -j\"$(nproc 2>/dev/null || echo 1)\""),
            sh("Build koch", "nim c koch.nim"),
            sh("Build compiler", "./koch boot -d:release && rm -rf csources"),
            sh("Pack compiler", "tar -czf \"$CIFLOW_ARTIFACTS_OUT/compiler\" bin"),
            condition="skip-if-duplicate",
            produces=["compiler"],
            concurrency="linux",
        ),
        job(
            "test",
            sh("Unpack compiler", "tar -xzf \"$CIFLOW_ARTIFACTS_IN/compiler\""),
            sh(
                "Run tester",
                "./koch test --batch:\"${CIFLOW_MATRIX_BATCH}_${CIFLOW_MATRIX_TOTAL_BATCH}\" all",
            ),
            sh("Print all test errors", "nim r tools/ci_testresults", when="failure"),
            needs=["bootstrap"],
            # If a batch is added, bump total_batch as well.
            matrix=matrix(batch=[0, 1], total_batch=[2]),
            consumes=["compiler"],
            concurrency="linux",
        ),
        job(
            "orc",
            sh("Unpack compiler", "tar -xzf \"$CIFLOW_ARTIFACTS_IN/compiler\""),
            sh("Test ORC bootstrap", "./koch boot -d:release --gc:orc"),
            needs=["bootstrap"],
            consumes=["compiler"],
            concurrency="linux",
        ),
        job(
            "tooling",
            sh("Unpack compiler", "tar -xzf \"$CIFLOW_ARTIFACTS_IN/compiler\""),
            sh("Build tooling", "./koch tools -d:release"),
            sh("Test tooling", "./koch testTools"),
            needs=["bootstrap"],
            consumes=["compiler"],
            concurrency="linux",
        ),
        job(
            "doc",
            sh("Unpack compiler", "tar -xzf \"$CIFLOW_ARTIFACTS_IN/compiler\""),
            sh("Build docs", "./koch doc --git.devel:\"$CIFLOW_BRANCH\""),
            sh(
                "Publish",
                "./tools/publish_docs.sh doc/html",
                events=["push"],
                branches=["devel"],
            ),
            needs=["bootstrap"],
            consumes=["compiler"],
            concurrency="linux",
        ),
        gate("passed", needs=["bootstrap", "test", "tooling", "doc", "orc"], allow_skipped=True),
        name="build-and-test",
        triggers=[
            on_push(branches_ignore=["staging.tmp", "trying.tmp", "staging-squash-merge.tmp"]),
            on_pull_request(branches=["devel"]),
        ],
        concurrency_limits={"linux": 4},
    )
