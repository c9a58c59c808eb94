"""
Pose Action Model — binary (normal / abnormal) classifier for one action
category.

A bidirectional LSTM over the feature window. Each window step is the
flattened (channels × joints) slice of the feature tensor.

Input:  (batch, 60, 3, 18)  — window × channels × joints
Output: (batch, 2)          — logits ordered as BINARY_CLASSES
"""
from typing import Dict, Sequence

import numpy as np
import torch
import torch.nn as nn


# Class labels, ordered as in training data
BINARY_CLASSES = ['normal', 'abnormal']

DEFAULT_INPUT_SHAPE = (60, 3, 18)


class PoseActionNet(nn.Module):
    """
    Bidirectional LSTM for skeleton-based binary action recognition.

    Architecture:
        Input (C·J) → LayerNorm → BiLSTM(hidden, layers) → Attention → FC(hidden) → FC(2)
    """

    def __init__(
        self,
        input_shape: Sequence[int] = DEFAULT_INPUT_SHAPE,
        hidden_dim: int = 64,
        num_layers: int = 1,
        dropout: float = 0.0,
    ):
        super().__init__()
        self.input_shape = tuple(input_shape)
        self.hidden_dim = hidden_dim
        self.num_layers = num_layers

        window, channels, joints = self.input_shape
        step_dim = channels * joints

        self.input_norm = nn.LayerNorm(step_dim)

        self.lstm = nn.LSTM(
            input_size=step_dim,
            hidden_size=hidden_dim,
            num_layers=num_layers,
            batch_first=True,
            bidirectional=True,
            dropout=dropout if num_layers > 1 else 0.0,
        )

        # Attention pooling over window steps
        self.attention = nn.Sequential(
            nn.Linear(hidden_dim * 2, 32),
            nn.Tanh(),
            nn.Linear(32, 1),
        )

        self.classifier = nn.Sequential(
            nn.Linear(hidden_dim * 2, hidden_dim),
            nn.ReLU(),
            nn.Dropout(dropout),
            nn.Linear(hidden_dim, len(BINARY_CLASSES)),
        )

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        """
        Args:
            x: (batch, window, channels, joints)
        Returns:
            logits: (batch, 2)
        """
        batch, window = x.shape[0], x.shape[1]
        x = x.reshape(batch, window, -1)
        x = self.input_norm(x)

        lstm_out, _ = self.lstm(x)                     # (batch, window, hidden*2)

        attn_weights = torch.softmax(self.attention(lstm_out), dim=1)
        context = torch.sum(lstm_out * attn_weights, dim=1)

        return self.classifier(context)


class TorchActionClassifier:
    """
    Inference wrapper around a PoseActionNet.

    predict() takes a numpy FeatureTensor and returns a probability per class
    label. Stateless after construction, so one instance may be called from
    several threads at once.
    """

    def __init__(self, model: PoseActionNet, device: str = 'cpu',
                 class_names: Sequence[str] = BINARY_CLASSES):
        self.model = model.to(device)
        self.model.eval()
        self.device = device
        self.class_names = list(class_names)

    @property
    def input_shape(self):
        return self.model.input_shape

    def predict(self, tensor: np.ndarray) -> Dict[str, float]:
        batch = torch.from_numpy(np.ascontiguousarray(tensor, dtype=np.float32))
        batch = batch.unsqueeze(0).to(self.device)

        with torch.no_grad():
            probs = torch.softmax(self.model(batch), dim=1)[0].cpu().numpy()

        return {name: float(p) for name, p in zip(self.class_names, probs)}

