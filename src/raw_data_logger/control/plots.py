"""
Plot components for the logger control surface.
"""

from typing import List

import plotly.graph_objects as go  # type: ignore
from plotly.subplots import make_subplots  # type: ignore

from ..row_codec import SampleRow

SUBPLOT_TITLES = ("Accelerometer (g)", "Gyroscope (°/s)", "Heart Rate (bpm)")

_TIMESTAMP_RANGE = 1 << 32


def relative_seconds(samples: List[SampleRow]) -> List[float]:
    """Seconds since the first sample, tolerating uint32 timestamp wraparound."""
    if not samples:
        return []
    start = samples[0].timestamp
    return [((row.timestamp - start) % _TIMESTAMP_RANGE) / 1000.0 for row in samples]


def create_samples_figure(samples: List[SampleRow]) -> go.Figure:
    """Create a 3x1 subplot layout with accel, gyro and heart rate traces."""
    fig = make_subplots(
        rows=3,
        cols=1,
        subplot_titles=SUBPLOT_TITLES,
        shared_xaxes=True,
        vertical_spacing=0.08,
    )

    if not samples:
        for row in (1, 2, 3):
            fig.add_annotation(
                x=0.5,
                y=0.5,
                text="No data available",
                showarrow=False,
                xref="paper",
                yref="paper",
                font=dict(size=14, color="gray"),
                row=row,
                col=1,
            )
        fig.update_layout(height=600, showlegend=False)
        return fig

    timestamps = relative_seconds(samples)

    accel = [row.accel_values for row in samples]
    for axis, (name, color) in enumerate(
        (("X-axis", "red"), ("Y-axis", "green"), ("Z-axis", "blue"))
    ):
        fig.add_trace(
            go.Scatter(
                x=timestamps,
                y=[values[axis] for values in accel],
                mode="lines+markers",
                name=name,
                line=dict(color=color, width=1.5),
            ),
            row=1,
            col=1,
        )

    gyro = [row.gyro_values for row in samples]
    for axis, (name, color) in enumerate(
        (("X-rotation", "darkred"), ("Y-rotation", "darkgreen"), ("Z-rotation", "darkblue"))
    ):
        fig.add_trace(
            go.Scatter(
                x=timestamps,
                y=[values[axis] for values in gyro],
                mode="lines+markers",
                name=name,
                line=dict(color=color, width=1.5),
                showlegend=False,
            ),
            row=2,
            col=1,
        )

    # 0 means the monitor had no reading for that tick
    fig.add_trace(
        go.Scatter(
            x=timestamps,
            y=[row.heart_rate or None for row in samples],
            mode="lines+markers",
            name="Heart rate",
            line=dict(color="purple", width=1.5),
            connectgaps=False,
            showlegend=False,
        ),
        row=3,
        col=1,
    )

    fig.update_xaxes(title_text="Time (seconds)", row=3, col=1)
    fig.update_layout(
        height=600,
        margin=dict(l=50, r=20, t=50, b=50),
        legend=dict(orientation="h", yanchor="bottom", y=1.02, xanchor="right", x=1),
    )
    return fig
