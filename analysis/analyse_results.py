import pandas as pd
import matplotlib.pyplot as plt
import numpy as np
import plotly.express as px
from pathlib import Path
from job_simulator.run_simulation import load_config


def read_parquet_directory(directory, pattern="*.parquet"):
    """Read and combine every parquet file in a directory matching pattern"""
    files = sorted(Path(directory).glob(pattern))
    if not files:
        raise FileNotFoundError(f"No parquet files matching '{pattern}' found in: {directory}")
    print(f"Reading {len(files)} file(s) from: {directory}")
    dfs = []
    for f in files:
        print(f"  - {f.name}")
        dfs.append(pd.read_parquet(f))
    return pd.concat(dfs, ignore_index=True)


def summarise_outcomes(events_df):
    """
    Allocation success rate and retry latency from the per outcome event log.
    A job counts as successful once it is running, whether immediately or after retries.
    """
    status = events_df["status"]
    allocated = int((status == "Allocated").sum())
    reinserted = int((status == "Reinserted").sum())
    after_retry = int((status == "Allocated After Retry").sum())
    rejected = int((status == "Rejected").sum())
    arrivals = allocated + reinserted

    waits = events_df.loc[status == "Allocated After Retry", "wait_ticks"].to_numpy()
    has_waits = len(waits) > 0

    return {
        "jobs": arrivals,
        "allocated": allocated,
        "reinserted": reinserted,
        "allocated_after_retry": after_retry,
        "rejected": rejected,
        "still_queued": reinserted - after_retry - rejected,
        "unsatisfiable": int(events_df.loc[status == "Reinserted", "unsatisfiable"].sum()),
        "success_rate": (allocated + after_retry) / arrivals if arrivals else 0.0,
        "immediate_rate": allocated / arrivals if arrivals else 0.0,
        "mean_retry_wait": float(np.mean(waits)) if has_waits else 0.0,
        "p95_retry_wait": float(np.percentile(waits, 95)) if has_waits else 0.0,
        "max_retry_wait": int(np.max(waits)) if has_waits else 0,
    }


def cluster_utilisation(nodes_df):
    return (
        nodes_df
        .groupby(["event_index", "tick"], as_index=False)
        .agg({
            "CPUs_in_use": "sum",
            "memory_in_use": "sum",
            "total_CPUs": "sum",
            "total_memory": "sum",
            "CPU_utilisation": "mean",
            "memory_utilisation": "mean",
            "running_jobs": "sum",
        })
        .sort_values("tick")
    )


def plot_cluster_utilisation(nodes_df, events_df=None):
    cluster = cluster_utilisation(nodes_df)

    fig, axes = plt.subplots(1, 2, figsize=(14, 5))

    # Plot 1: utilisation percentages
    axes[0].plot(cluster["tick"], cluster["CPU_utilisation"] * 100, label="CPU", linewidth=1.0)
    axes[0].plot(cluster["tick"], cluster["memory_utilisation"] * 100, label="Memory", linewidth=1.0)
    axes[0].set_xlabel("Tick (hours)")
    axes[0].set_ylabel("Utilisation (%)")
    axes[0].set_ylim(0, 105)
    axes[0].set_title("Cluster utilisation over time")
    axes[0].grid(True, alpha=0.3)
    axes[0].legend()

    # Plot 2: running and queued jobs
    ax2 = axes[1]
    ax2.plot(cluster["tick"], cluster["running_jobs"], label="Running jobs", linewidth=1.5)
    ax2.fill_between(cluster["tick"], cluster["running_jobs"], alpha=0.3)
    if events_df is not None and len(events_df) > 0:
        queued = events_df.groupby("tick", as_index=False)["queued_jobs"].last()
        ax2.plot(queued["tick"], queued["queued_jobs"], label="Queued jobs", linewidth=1.5)
    ax2.set_xlabel("Tick (hours)")
    ax2.set_ylabel("Jobs")
    ax2.set_title("Running and queued jobs over time")
    ax2.grid(True, alpha=0.3)
    ax2.legend()

    fig.tight_layout()
    return fig


def plot_node_heatmap(nodes_df):
    """Per node CPU utilisation heatmap, tall enough to scroll through every node"""
    cpu_pivot = (
        nodes_df
        .groupby(["node_name", "tick"], as_index=False)
        .agg({"CPU_utilisation": "mean"})
        .pivot(index="tick", columns="node_name", values="CPU_utilisation")
        .sort_index()
    )

    fig = px.imshow(
        cpu_pivot.T.values * 100.0,
        x=cpu_pivot.index,
        y=cpu_pivot.columns,
        labels=dict(x="Tick", y="Node", color="CPU utilisation (%)"),
        aspect="auto",
        origin="lower",
        zmin=0,
        zmax=100,
        color_continuous_scale="Viridis",
    )
    fig.update_layout(
        title="Per node CPU utilisation over time",
        height=max(600, 15 * len(cpu_pivot.columns)),
    )
    return fig


if __name__ == "__main__":
    config = load_config("config.txt")
    output_directory = config.get('output_directory', 'output')
    # Events and node snapshots share the output directory, so each is picked out by name
    events_df = read_parquet_directory(config.get('input_events_directory', output_directory),
                                       config.get('input_events_pattern', '*events*.parquet'))
    nodes_df = read_parquet_directory(config.get('input_nodes_directory', output_directory),
                                      config.get('input_nodes_pattern', '*nodes*.parquet'))

    print(f"Event data shape: {events_df.shape}")
    print(f"Node data shape: {nodes_df.shape}")

    summary = summarise_outcomes(events_df)
    print("\n" + "="*60)
    print("ALLOCATION SUMMARY")
    print("="*60)
    print(f"Jobs:                    {summary['jobs']:,}")
    print(f"Allocated immediately:   {summary['allocated']:,}")
    print(f"Allocated after retry:   {summary['allocated_after_retry']:,}")
    print(f"Rejected:                {summary['rejected']:,}")
    print(f"Still queued:            {summary['still_queued']:,} ({summary['unsatisfiable']:,} unsatisfiable)")
    print(f"Success rate:            {summary['success_rate'] * 100:.2f}%")
    print(f"Mean retry wait:         {summary['mean_retry_wait']:.2f} ticks")
    print(f"95th percentile wait:    {summary['p95_retry_wait']:.2f} ticks")
    print(f"Max retry wait:          {summary['max_retry_wait']:,} ticks")
    print("="*60 + "\n")

    plot_cluster_utilisation(nodes_df, events_df)
    plt.show()

    plot_node_heatmap(nodes_df).show()
