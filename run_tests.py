#!/usr/bin/env python3
"""
测试运行脚本
按模块组或测试类型运行 pytest，并在运行前报告视觉库能力
"""

import sys
import subprocess
from pathlib import Path
import argparse

# 按功能划分的单元测试组
TEST_GROUPS = {
    'pose': ['tests/unit/test_pnp_solver.py', 'tests/unit/test_geometry_utils.py'],
    'marker': ['tests/unit/test_marker_tracker.py'],
    'odometry': ['tests/unit/test_visual_odometry.py'],
    'fusion': ['tests/unit/test_anchor_manager.py'],
    'utils': [
        'tests/unit/test_config_manager.py',
        'tests/unit/test_data_converter.py',
        'tests/unit/test_utils.py',
        'tests/unit/test_visualization.py',
        'tests/unit/test_cli.py',
    ],
}


def build_command(targets, verbose=True, coverage=False, fail_fast=False, keyword=None):
    """组装pytest命令"""
    cmd = [sys.executable, '-m', 'pytest', *targets, '--tb=short']
    if verbose:
        cmd.append('-v')
    if fail_fast:
        cmd.append('-x')
    if keyword:
        cmd.extend(['-k', keyword])
    if coverage:
        cmd.extend(['--cov=marker_anchor', '--cov-report=html', '--cov-report=term-missing'])
    return cmd


def resolve_targets(test_type):
    if test_type == 'all':
        return ['tests/']
    if test_type == 'unit':
        return ['tests/unit/']
    if test_type == 'integration':
        return ['tests/integration/']
    return TEST_GROUPS[test_type]


def check_dependencies():
    """检查测试依赖并报告OpenCV能力"""
    try:
        import pytest  # noqa: F401
        import numpy  # noqa: F401
        import yaml  # noqa: F401
        import cv2
    except ImportError as e:
        print(f"[FAIL] Missing test dependency: {e}")
        print("Please install test dependencies with:")
        print("pip install -e .[dev]")
        return False

    from marker_anchor.utils.capabilities import probe_capabilities
    caps = probe_capabilities(cv2)
    print(f"[OK] OpenCV {caps.version}")
    print(f"     marker tracking: {caps.marker_tracking}, odometry: {caps.odometry.value}")
    if not caps.odometry.available:
        print("[WARN] Visual odometry tests will fail without epipolar primitives")
    return True


def main():
    """主函数"""
    parser = argparse.ArgumentParser(description='Run Marker Anchor tests')
    parser.add_argument('--type', choices=['all', 'unit', 'integration', *TEST_GROUPS],
                        default='all', help='Test type or module group to run')
    parser.add_argument('--verbose', action='store_true', help='Verbose output')
    parser.add_argument('--coverage', action='store_true', help='Generate coverage report')
    parser.add_argument('-x', '--fail-fast', action='store_true', help='Stop at first failure')
    parser.add_argument('-k', '--keyword', default=None, help='Only run tests matching expression')
    parser.add_argument('--check-deps', action='store_true', help='Check test dependencies only')
    args = parser.parse_args()

    print("Marker Anchor Test Runner")
    print("=" * 50)

    if not check_dependencies():
        return False
    if args.check_deps:
        return True

    cmd = build_command(resolve_targets(args.type), args.verbose, args.coverage,
                        args.fail_fast, args.keyword)
    print(f"Running command: {' '.join(cmd)}")
    print("-" * 60)

    result = subprocess.run(cmd, cwd=Path(__file__).parent)
    success = result.returncode == 0

    if success:
        print("\n[OK] All tests passed!")
    else:
        print("\n[FAIL] Some tests failed!")
    return success


if __name__ == "__main__":
    sys.exit(0 if main() else 1)
