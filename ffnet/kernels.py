"""CUDA kernels of the GPU backend.

All buffers are flat float32 arrays. Volumes are laid out as
``x + width * (y + height * z)``; a fully connected weight matrix as
``column + (inputs + 1) * row`` with the bias in the last column; the kernels
of a convolution layer are packed along depth, kernel ``k`` occupying slices
``k * input_depth`` to ``(k + 1) * input_depth - 1``.

Update kernels apply ``velocity = momentum * velocity + lr * step`` and
``weight = weight * (1 - decay) + velocity`` where ``step`` is the descent
direction.
"""
import math

from numba import cuda


# Fully connected

@cuda.jit
def fully_connected_forward(inputs, outputs, weights, input_count, output_count):
    row, _, _ = cuda.grid(3)
    if row >= output_count:
        return
    base = row * (input_count + 1)
    acc = weights[base + input_count]
    for column in range(input_count):
        acc += weights[base + column] * inputs[column]
    outputs[row] = acc


@cuda.jit
def fully_connected_backpropagate(inputs, next_gradient, gradient, weights, velocity,
                                  learning_rate, momentum, decay, input_count, output_count):
    # one thread per weight column, the last thread owns the bias column
    column, _, _ = cuda.grid(3)
    if column > input_count:
        return
    x = 1.0
    if column < input_count:
        x = inputs[column]
        acc = 0.0
        for row in range(output_count):
            acc += weights[column + (input_count + 1) * row] * next_gradient[row]
        gradient[column] = acc
    for row in range(output_count):
        idx = column + (input_count + 1) * row
        v = momentum * velocity[idx] + learning_rate * next_gradient[row] * x
        velocity[idx] = v
        weights[idx] = weights[idx] * (1.0 - decay) + v


# Convolution

@cuda.jit
def convolution_forward(inputs, outputs, kernels, bias,
                        input_width, input_height, input_depth,
                        output_width, output_height, output_depth,
                        kernel_width, kernel_height, inset_x, inset_y):
    x, y, k = cuda.grid(3)
    if x >= output_width or y >= output_height or k >= output_depth:
        return
    acc = bias[k]
    for d in range(input_depth):
        for ky in range(kernel_height):
            sy = y + inset_y + ky
            if sy < 0 or sy >= input_height:
                continue
            for kx in range(kernel_width):
                sx = x + inset_x + kx
                if sx < 0 or sx >= input_width:
                    continue
                acc += (inputs[sx + input_width * (sy + input_height * d)]
                        * kernels[kx + kernel_width * (ky + kernel_height * (k * input_depth + d))])
    outputs[x + output_width * (y + output_height * k)] = acc


@cuda.jit
def convolution_backpropagate(next_gradient, gradient, kernels,
                              input_width, input_height, input_depth,
                              output_width, output_height, output_depth,
                              kernel_width, kernel_height, inset_x, inset_y):
    u, v, d = cuda.grid(3)
    if u >= input_width or v >= input_height or d >= input_depth:
        return
    acc = 0.0
    for k in range(output_depth):
        for ky in range(kernel_height):
            gy = v - inset_y - ky
            if gy < 0 or gy >= output_height:
                continue
            for kx in range(kernel_width):
                gx = u - inset_x - kx
                if gx < 0 or gx >= output_width:
                    continue
                acc += (next_gradient[gx + output_width * (gy + output_height * k)]
                        * kernels[kx + kernel_width * (ky + kernel_height * (k * input_depth + d))])
    gradient[u + input_width * (v + input_height * d)] = acc


@cuda.jit
def convolution_adjust_weights(inputs, next_gradient, kernels, bias, kernel_velocity, bias_velocity,
                               learning_rate, momentum, decay,
                               input_width, input_height, input_depth,
                               output_width, output_height, output_depth,
                               kernel_width, kernel_height, inset_x, inset_y):
    # must run after convolution_backpropagate, which reads the old kernels
    kx, ky, slot = cuda.grid(3)
    if kx >= kernel_width or ky >= kernel_height or slot >= input_depth * output_depth:
        return
    k = slot // input_depth
    d = slot - k * input_depth
    step = 0.0
    for y in range(output_height):
        sy = y + inset_y + ky
        if sy < 0 or sy >= input_height:
            continue
        for x in range(output_width):
            sx = x + inset_x + kx
            if sx < 0 or sx >= input_width:
                continue
            step += (next_gradient[x + output_width * (y + output_height * k)]
                     * inputs[sx + input_width * (sy + input_height * d)])
    idx = kx + kernel_width * (ky + kernel_height * slot)
    v = momentum * kernel_velocity[idx] + learning_rate * step
    kernel_velocity[idx] = v
    kernels[idx] = kernels[idx] * (1.0 - decay) + v

    if kx == 0 and ky == 0 and d == 0:
        bias_step = 0.0
        for i in range(output_width * output_height):
            bias_step += next_gradient[i + output_width * output_height * k]
        bv = momentum * bias_velocity[k] + learning_rate * bias_step
        bias_velocity[k] = bv
        bias[k] = bias[k] * (1.0 - decay) + bv


# Max pooling

@cuda.jit
def pooling_forward(inputs, outputs, input_width, input_height, output_width, output_height, depth):
    x, y, z = cuda.grid(3)
    if x >= output_width or y >= output_height or z >= depth:
        return
    pool_x = input_width // output_width
    pool_y = input_height // output_height
    best = inputs[x * pool_x + input_width * (y * pool_y + input_height * z)]
    for py in range(pool_y):
        for px in range(pool_x):
            value = inputs[x * pool_x + px + input_width * (y * pool_y + py + input_height * z)]
            if value > best:
                best = value
    outputs[x + output_width * (y + output_height * z)] = best


@cuda.jit
def pooling_backpropagate(inputs, next_gradient, gradient, input_width, input_height,
                          output_width, output_height, depth):
    x, y, z = cuda.grid(3)
    if x >= output_width or y >= output_height or z >= depth:
        return
    pool_x = input_width // output_width
    pool_y = input_height // output_height
    best = inputs[x * pool_x + input_width * (y * pool_y + input_height * z)]
    best_x = 0
    best_y = 0
    for py in range(pool_y):
        for px in range(pool_x):
            value = inputs[x * pool_x + px + input_width * (y * pool_y + py + input_height * z)]
            if value > best:
                best = value
                best_x = px
                best_y = py
    g = next_gradient[x + output_width * (y + output_height * z)]
    for py in range(pool_y):
        for px in range(pool_x):
            idx = x * pool_x + px + input_width * (y * pool_y + py + input_height * z)
            if px == best_x and py == best_y:
                gradient[idx] = g
            else:
                gradient[idx] = 0.0


# Nonlinearities. Backpropagation reads the layer output of the same step.

@cuda.jit
def nonlinearity_forward_relu(inputs, outputs, count):
    i, _, _ = cuda.grid(3)
    if i < count:
        value = inputs[i]
        outputs[i] = value if value > 0.0 else 0.0


@cuda.jit
def nonlinearity_forward_sigmoid(inputs, outputs, count):
    i, _, _ = cuda.grid(3)
    if i < count:
        outputs[i] = 1.0 / (1.0 + math.exp(-inputs[i]))


@cuda.jit
def nonlinearity_forward_tanh(inputs, outputs, count):
    i, _, _ = cuda.grid(3)
    if i < count:
        outputs[i] = math.tanh(inputs[i])


@cuda.jit
def nonlinearity_backpropagate_relu(outputs, next_gradient, gradient, count):
    i, _, _ = cuda.grid(3)
    if i < count:
        gradient[i] = next_gradient[i] if outputs[i] > 0.0 else 0.0


@cuda.jit
def nonlinearity_backpropagate_sigmoid(outputs, next_gradient, gradient, count):
    i, _, _ = cuda.grid(3)
    if i < count:
        y = outputs[i]
        gradient[i] = next_gradient[i] * y * (1.0 - y)


@cuda.jit
def nonlinearity_backpropagate_tanh(outputs, next_gradient, gradient, count):
    i, _, _ = cuda.grid(3)
    if i < count:
        y = outputs[i]
        gradient[i] = next_gradient[i] * (1.0 - y * y)


# Loss and softmax output

@cuda.jit
def loss_delta(expected, actual, delta, count):
    i, _, _ = cuda.grid(3)
    if i < count:
        delta[i] = expected[i] - actual[i]


@cuda.jit
def softmax_forward_exp(inputs, exponentials, count):
    i, _, _ = cuda.grid(3)
    if i >= count:
        return
    largest = inputs[0]
    for j in range(1, count):
        if inputs[j] > largest:
            largest = inputs[j]
    exponentials[i] = math.exp(inputs[i] - largest)


@cuda.jit
def softmax_forward(exponentials, outputs, count):
    i, _, _ = cuda.grid(3)
    if i >= count:
        return
    total = 0.0
    for j in range(count):
        total += exponentials[j]
    outputs[i] = exponentials[i] / total


KERNELS = {
    'fully_connected_forward': fully_connected_forward,
    'fully_connected_backpropagate': fully_connected_backpropagate,
    'convolution_forward': convolution_forward,
    'convolution_backpropagate': convolution_backpropagate,
    'convolution_adjust_weights': convolution_adjust_weights,
    'pooling_forward': pooling_forward,
    'pooling_backpropagate': pooling_backpropagate,
    'nonlinearity_forward_relu': nonlinearity_forward_relu,
    'nonlinearity_forward_sigmoid': nonlinearity_forward_sigmoid,
    'nonlinearity_forward_tanh': nonlinearity_forward_tanh,
    'nonlinearity_backpropagate_relu': nonlinearity_backpropagate_relu,
    'nonlinearity_backpropagate_sigmoid': nonlinearity_backpropagate_sigmoid,
    'nonlinearity_backpropagate_tanh': nonlinearity_backpropagate_tanh,
    'loss_delta': loss_delta,
    'softmax_forward_exp': softmax_forward_exp,
    'softmax_forward': softmax_forward,
}
