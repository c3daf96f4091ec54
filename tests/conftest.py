"""
Shared pytest fixtures for cloudtest.

Go-kind executions run against a stub `go` executable that is put first on
PATH, so the suite needs bash but no Go toolchain. The stub decides the
outcome from the requested test name:

    *Fail*     prints a failure and exits 1
    *Timeout*  sleeps 4 seconds, then passes
    *Panic*    prints a panic and exits 2
    *Missing*  reports that no tests matched
    anything   passes
"""

from __future__ import annotations

import os
import stat
from pathlib import Path
from typing import Callable

import pytest

from cloudtest.cluster.instance import ClusterInstance, InstanceStatus
from cloudtest.config.schema import ClusterProviderSpec, CloudTestConfig

FAKE_GO = r"""#!/usr/bin/env bash
name=""
tags=""
while [ $# -gt 0 ]; do
  case "$1" in
    -run) name="$2"; shift 2 ;;
    -tags) tags="$2"; shift 2 ;;
    *) shift ;;
  esac
done
name="${name#^}"
name="${name%\$}"
echo "=== RUN   $name"
echo "cluster config: ${KUBECONFIG}"
case "$name" in
  *Timeout*) sleep 4 ;;
  *Fail*)
    echo "    sample_test.go:12: failing on purpose"
    echo "--- FAIL: $name (0.00s)"
    echo "FAIL"
    exit 1 ;;
  *Panic*)
    echo "panic: boom"
    exit 2 ;;
  *Missing*)
    echo "testing: warning: no tests to run"
    echo "PASS"
    exit 0 ;;
esac
echo "--- PASS: $name (0.00s)"
echo "PASS"
"""

SAMPLE_TESTS = """package sample

import (
\t"testing"
\t"time"
)

func TestPass(t *testing.T) {
}

func TestFail(t *testing.T) {
\tt.FailNow()
}

func TestTimeout(t *testing.T) {
\ttime.Sleep(4 * time.Second)
}

func TestPass2(t *testing.T) {
}

func TestPass3(t *testing.T) {
}

func TestPass4(t *testing.T) {
}

func helperNotATest(t *testing.T) {
}
"""

SAMPLE_FAILED_LIMIT_TESTS = """// +build failed_limit

package sample

import "testing"

func TestFail1(t *testing.T) {
\tt.FailNow()
}

func TestFail2(t *testing.T) {
\tt.FailNow()
}
"""


@pytest.fixture
def fake_go(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Install the stub go executable first on PATH."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    go = bin_dir / "go"
    go.write_text(FAKE_GO)
    go.chmod(go.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")
    return go


@pytest.fixture
def sample_package(tmp_path: Path) -> Path:
    """A Go package with 6 default tests and 2 behind the failed_limit tag."""
    package = tmp_path / "sample"
    package.mkdir()
    (package / "sample_test.go").write_text(SAMPLE_TESTS)
    (package / "sample_failed_limit_test.go").write_text(SAMPLE_FAILED_LIMIT_TESTS)
    return package


@pytest.fixture
def config(tmp_path: Path) -> CloudTestConfig:
    """Empty run configuration rooted in a temporary directory."""
    return CloudTestConfig(
        timeout=300,
        config_root=str(tmp_path / ".tests"),
        workers=4,
    )


@pytest.fixture
def create_provider() -> Callable[..., ClusterProviderSpec]:
    """Factory adding a healthy two-instance provider to a config."""

    def _create(config: CloudTestConfig, name: str, instances: int = 2) -> ClusterProviderSpec:
        provider = ClusterProviderSpec(
            name=name,
            instances=instances,
            timeout=30,
            scripts={
                "start": "echo starting $(cluster-name)",
                "config": "echo ./.tests/config",
                "stop": "echo stopping",
            },
        )
        config.providers.append(provider)
        return provider

    return _create


@pytest.fixture
def ready_instance() -> Callable[..., ClusterInstance]:
    """Factory for READY instances that never went through a pool."""

    def _create(provider_name: str, config_path: str, index: int = 1) -> ClusterInstance:
        provider = ClusterProviderSpec(
            name=provider_name,
            scripts={"start": "true", "config": f"echo {config_path}"},
        )
        return ClusterInstance(
            id=f"{provider_name}-{index}",
            provider=provider,
            status=InstanceStatus.READY,
            config_path=config_path,
        )

    return _create
