from job_simulator.job_simulator import (
    SchedulerSimulation, WorkerPool, FirstFitNodeSelection, SimulationClock,
    DEFAULT_NODE_COUNT, DEFAULT_NODE_CORES, DEFAULT_NODE_MEMORY,
)
from data_handling.job_file_conversion import load_job_source
import pandas as pd
from pathlib import Path
import pyarrow.parquet as pq
import pyarrow as pa


REPORT_COLUMNS = ['JobId', 'ArrivalDay', 'ArrivalHour', 'MemReq', 'CPUReq', 'ExeTime', 'Status']


def load_config(config_file="config.txt"):
    """Load configuration from config file"""
    config = {}
    # Try to find config file in multiple locations
    config_paths = [
        config_file,  # Current directory
        Path(__file__).parent.parent / config_file,  # Repository root
    ]

    config_path = None
    for path in config_paths:
        if Path(path).exists():
            config_path = path
            break

    if config_path is None:
        raise FileNotFoundError(f"Config file '{config_file}' not found in any of: {config_paths}")

    with open(config_path, 'r') as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith('#'):
                continue
            if '=' in line:
                key, value = line.split('=', 1)
                config[key.strip()] = value.strip()
    return config


def get_strategy_instance(strategy_name):
    if strategy_name == "FirstFitNodeSelection":
        return FirstFitNodeSelection()
    else:
        raise ValueError(f"Unknown Selection Strategy '{strategy_name}'")


def get_int_option(config, key, default=None):
    value = config.get(key, '')
    if value == '':
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Config option '{key}' must be an integer, got '{value}'") from None


def create_pool(config):
    return WorkerPool.uniform(
        node_count=get_int_option(config, 'node_count', DEFAULT_NODE_COUNT),
        cores=get_int_option(config, 'node_cores', DEFAULT_NODE_CORES),
        memory=get_int_option(config, 'node_memory', DEFAULT_NODE_MEMORY),
        node_selection_strategy=get_strategy_instance(
            config.get('node_selection_strategy', 'FirstFitNodeSelection')),
    )


def outcome_to_report_row(outcome):
    job = outcome.job
    return {
        'JobId': job.id,
        'ArrivalDay': job.arrival_day,
        'ArrivalHour': job.arrival_hour,
        'MemReq': job.memory_required,
        'CPUReq': job.CPUs_required,
        'ExeTime': job.execution_time,
        'Status': str(outcome.kind),
    }


def run_simulation(config, jobs=None):
    """Run simulation with the provided configuration. Returns the statistics."""

    pool = create_pool(config)
    clock = SimulationClock(config.get('clock_policy', 'per_job'))

    # Setup output directory and file paths
    output_directory = config.get('output_directory', 'output')

    output_path = Path(output_directory)
    output_path.mkdir(parents=True, exist_ok=True)

    output_report = output_path / config.get('output_report', 'overall_report.csv')
    output_events = output_path / config.get('output_events', 'simulation_log_events.parquet')
    output_nodes = output_path / config.get('output_nodes', 'simulation_log_nodes.parquet')
    output_log = output_path / config.get('output_log', 'simulation.log')

    report_records = []
    event_records = []
    node_records = []

    simulation = SchedulerSimulation(
        pool,
        clock=clock,
        max_retries=get_int_option(config, 'max_retries'),
        reporter=lambda outcome: report_records.append(outcome_to_report_row(outcome)),
        validate_invariants=config.get('validate_invariants', 'true').lower() == 'true',
        log_file=str(output_log),
        echo=config.get('echo', 'true').lower() == 'true',
    )

    if jobs is None:
        jobs = load_job_source(config['input_jobs'])

    print(f"Starting simulation with {len(jobs):,} jobs on {len(pool)} nodes...")
    for i, job in enumerate(jobs):
        outcomes = simulation.process_job(job)
        state = simulation.get_current_state()

        for outcome in outcomes:
            event_records.append({
                'event_index': i,
                'tick': outcome.tick,
                'day': outcome.day,
                'hour': outcome.hour,
                'job_id': outcome.job.id,
                'status': str(outcome.kind),
                'node_name': outcome.node_name,
                'CPUs_required': outcome.job.CPUs_required,
                'memory_required': outcome.job.memory_required,
                'execution_time': outcome.job.execution_time,
                'retries': outcome.retries,
                'wait_ticks': outcome.wait_ticks,
                'unsatisfiable': outcome.unsatisfiable,
                'running_jobs': state['running_jobs'],
                'queued_jobs': state['queued_jobs'],
            })

        for n_state in state['nodes']:
            node_records.append({
                'event_index': i,
                'tick': state['tick'],
                'node_name': n_state['name'],
                'CPUs_in_use': n_state['CPUs_in_use'],
                'memory_in_use': n_state['memory_in_use'],
                'total_CPUs': n_state['total_CPUs'],
                'total_memory': n_state['total_memory'],
                'running_jobs': n_state['running_jobs'],
                'CPU_utilisation': n_state['CPUs_in_use'] / n_state['total_CPUs'] if n_state['total_CPUs'] > 0 else 0,
                'memory_utilisation': n_state['memory_in_use'] / n_state['total_memory'] if n_state['total_memory'] > 0 else 0,
            })

    pd.DataFrame(report_records, columns=REPORT_COLUMNS).to_csv(output_report, index=False)

    events_table = pa.Table.from_pandas(pd.DataFrame(event_records))
    nodes_table = pa.Table.from_pandas(pd.DataFrame(node_records))

    pq.write_table(events_table, output_events)
    pq.write_table(nodes_table, output_nodes)

    # Print simulation statistics
    stats = simulation.get_stats()
    print("\nSimulation complete:")
    for key, value in stats.items():
        print(f"{key}: {value:,}")

    starved = simulation.starved_jobs()
    if starved:
        print(f"\nWarning: {len(starved)} job(s) can never be placed: {[job.id for job in starved]}")

    return stats


if __name__ == "__main__":
    config = load_config("config.txt")
    run_simulation(config)
