#!/usr/bin/env python3
"""
Q-Learning Placement Brain - Command Line
=========================================

Manages the brain documents a game writes while it trains. The game loop
itself imports qbrain and drives a Trainer; this script only looks after
what is saved on disk.

Usage:
    # Show what is saved (layers, schedules, rewards)
    python main.py --inspect

    # Write a freshly initialized brain from the default Config
    python main.py --init --seed 42

    # Delete the saved brain so the next run starts fresh
    python main.py --reset

    # Another model directory
    python main.py --inspect --model-dir models/experiment_1
"""

import argparse
import json
import sys
from dataclasses import replace

from config import Config
from qbrain.ai.network import Network
from qbrain.ai.persistence import NetworkPersistence
from qbrain.utils.logger import setup_logging, LogLevel


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Q-learning placement brain - inspect, create or reset saved brains",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
EXAMPLES
========
    python main.py --inspect                  Summarize the saved brain
    python main.py --inspect --json           Same, as JSON
    python main.py --init --seed 7            Save a fresh brain
    python main.py --reset                    Delete the saved brain
        """
    )

    mode_group = parser.add_mutually_exclusive_group(required=True)
    mode_group.add_argument(
        '--inspect', action='store_true',
        help='Show the saved brain documents'
    )
    mode_group.add_argument(
        '--init', action='store_true',
        help='Initialize a new brain from the default configuration and save it'
    )
    mode_group.add_argument(
        '--reset', action='store_true',
        help='Delete the saved brain documents'
    )

    parser.add_argument(
        '--model-dir', type=str, default=None,
        help='Directory holding the brain documents (default: Config.MODEL_DIR)'
    )
    parser.add_argument(
        '--seed', type=int, default=None,
        help='Random seed for --init'
    )
    parser.add_argument(
        '--json', action='store_true',
        help='Print --inspect output as JSON'
    )
    parser.add_argument(
        '--log-level', type=str, default='INFO',
        choices=[level.name for level in LogLevel],
        help='Console log level'
    )
    return parser.parse_args(argv)


def print_summary(info: dict) -> None:
    print("=" * 60)
    print(f"Brain: {info['model_dir']}")
    print("=" * 60)
    print(f"   Saved: {info['file_modified']}")
    sizes = info['layer_sizes']
    print(f"   Layers: {' -> '.join(str(s) for s in sizes)}")
    for name, activation, size in zip(info['layer_names'], info['activations'], sizes[1:]):
        print(f"      {name:>4}: {size:4d} {activation}")

    if not info['has_training_state']:
        print("\n   (no training state saved)")
        print("=" * 60)
        return

    hyper = info.get('hyperparameters', {})
    rewards = info.get('rewards', {})
    print(f"\n   Episodes: {hyper.get('episode_count', 0):,} | "
          f"Training passes: {hyper.get('training_steps', 0):,}")
    print(f"   Epsilon: {hyper.get('epsilon', 0.0):.4f} | "
          f"LR: {hyper.get('learning_rate', 0.0):.6f} | "
          f"Q-LR: {hyper.get('q_learning_rate', 0.0):.4f} | "
          f"Gamma: {hyper.get('discount_factor', 0.0):.4f}")
    best = rewards.get('best_reward')
    print(f"   Best reward: {best if best is not None else '-'} | "
          f"Moving average: {rewards.get('moving_average', 0.0):.2f}")
    print(f"   Replay experiences: {info.get('experiences', 0):,}")
    print("=" * 60)


def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging(level=LogLevel[args.log_level], force=True)

    config = Config()
    if args.seed is not None:
        config = replace(config, SEED=args.seed)
    persistence = NetworkPersistence(config, model_dir=args.model_dir)

    if args.inspect:
        info = persistence.inspect()
        if info is None:
            print(f"No saved brain in {persistence.model_dir}")
            return 1
        if args.json:
            print(json.dumps(info, indent=2))
        else:
            print_summary(info)
        return 0

    if args.init:
        network = Network(config)
        if persistence.save(network, save_reason='init') is None:
            return 1
        print(f"Saved a new {'-'.join(str(s) for s in network.layer_sizes())} brain "
              f"to {persistence.model_dir}")
        return 0

    removed = persistence.reset()
    if not removed:
        print(f"Nothing to delete in {persistence.model_dir}")
    for path in removed:
        print(f"Deleted {path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
