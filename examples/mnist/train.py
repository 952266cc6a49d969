"""MNIST Training Script

Train a small CNN on MNIST handwritten digits (0-9) on the host or the GPU
backend, then report training time and test accuracy.

Dataset: MNIST (28x28 grayscale images)
Download: http://yann.lecun.com/exdb/mnist/
Place the IDX files (raw or .gz) in the same directory as this script.

Usage:
    python train.py [--gpu] [--train 10000] [--test 1000] [--epochs 1]
"""
import argparse
import os
import sys
import time

# Add parent directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../..'))

import numpy as np
from ffnet import (Activation, ConvolutionLayer, DeviceContext, FeedForwardNetwork, FullyConnectedLayer,
                   GPUFeedForwardNetwork, NonlinearityLayer, PoolingLayer, ReshapingLayer, Shape)
from ffnet.data import load_mnist


def build_network(rng: np.random.Generator, num_classes: int = 10) -> FeedForwardNetwork:
    """Build CNN for MNIST classification.

    Architecture:
    - Conv(8, 5x5) -> ReLU -> MaxPool(2x2)
    - Reshape -> FullyConnected(num_classes) -> softmax
    """
    conv = ConvolutionLayer.random(Shape(28, 28, 1), 8, (5, 5), rng=rng)
    pooled = Shape(12, 12, 8)
    flat = Shape(1, 1, pooled.volume)
    return FeedForwardNetwork([
        conv,
        NonlinearityLayer(conv.output_shape, Activation.RELU),
        PoolingLayer(conv.output_shape, pooled),
        ReshapingLayer(pooled, flat),
        FullyConnectedLayer.random(flat.depth, num_classes, rng=rng),
    ], Activation.SOFTMAX)


def main():
    parser = argparse.ArgumentParser(description="Train ffnet on MNIST")
    parser.add_argument('--gpu', action='store_true', help="train with the CUDA backend")
    parser.add_argument('--train', type=int, default=10000, help="number of training samples")
    parser.add_argument('--test', type=int, default=1000, help="number of test samples")
    parser.add_argument('--epochs', type=int, default=1)
    parser.add_argument('--lr', type=float, default=0.01)
    args = parser.parse_args()

    print("=" * 60)
    print("MNIST Digit Recognition Training")
    print("=" * 60)

    script_dir = os.path.dirname(os.path.abspath(__file__))
    print("Loading MNIST dataset...")
    train, test = load_mnist(script_dir, args.train, args.test)
    print(f"Training samples: {len(train)}")
    print(f"Test samples: {len(test)}")
    print()

    rng = np.random.default_rng(0)
    network = build_network(rng)
    if args.gpu:
        network = GPUFeedForwardNetwork.from_network(network, DeviceContext.create())
        print(f"Backend: {network.context.name}")
    else:
        print("Backend: host (NumPy)")
    network.summary()
    print()

    start = time.perf_counter()
    history = network.fit(train, epochs=args.epochs, learning_rate=args.lr, annealing_rate=1e-4,
                          momentum=0.5, decay=1e-6, val_data=test, rng=rng)
    elapsed = time.perf_counter() - start

    print()
    print("=" * 60)
    print("Training Complete")
    print("=" * 60)
    print(f"Training time: {elapsed:.1f}s ({elapsed / max(len(train) * args.epochs, 1) * 1000:.2f} ms/sample)")
    print(f"Final training loss: {history['loss'][-1]:.4f}")
    print(f"Test accuracy: {network.evaluate(test):.4f}")
    print("=" * 60)


if __name__ == '__main__':
    main()
