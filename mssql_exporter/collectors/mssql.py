"""SQL Server diagnostic collectors.

Each collector owns the gauges it writes, registered on the registry passed to
build_collectors(). Counter-backed values (``.../sec`` performance counters)
are cumulative since instance start and are exported as gauges of that raw
value.
"""

from typing import Dict, Sequence

from prometheus_client import CollectorRegistry, Gauge

from .base import Collector, Rows, MetricSet, register_collectors

UP_METRIC = "mssql_up"

# Timeout for collectors that run on their own connection, in seconds
SLOW_QUERY_TIMEOUT = 30.0


def _gauge(registry: CollectorRegistry, name: str, documentation: str,
           labels: Sequence[str] = ()) -> Gauge:
    return Gauge(name, documentation, labelnames=labels, registry=registry)


def _perf_counter_query(counter_name: str, instance_name: str) -> str:
    return (
        "SELECT cntr_value FROM sys.dm_os_performance_counters "
        f"WHERE counter_name = '{counter_name}' AND instance_name = '{instance_name}'"
    )


def collect_up(rows: Rows, metrics: MetricSet) -> None:
    metrics[UP_METRIC].set(float(rows[0]["up"]))


def collect_product_version(rows: Rows, metrics: MetricSet) -> None:
    version = str(rows[0]["product_version"])
    major_minor = ".".join(version.split(".")[:2])
    metrics["mssql_product_version"].labels(product_version=version).set(float(major_minor))


def collect_instance_local_time(rows: Rows, metrics: MetricSet) -> None:
    metrics["mssql_instance_local_time"].set(float(rows[0]["epoch"]))


def collect_connections(rows: Rows, metrics: MetricSet) -> None:
    for row in rows:
        metrics["mssql_connections"].labels(
            database=row["database_name"] or "", state="current"
        ).set(float(row["connections"]))


def collect_client_connections(rows: Rows, metrics: MetricSet) -> None:
    for row in rows:
        metrics["mssql_client_connections"].labels(
            client=row["host_name"] or "", database=row["database_name"] or ""
        ).set(float(row["session_count"]))


def _single_counter(metric_name: str):
    def collect(rows: Rows, metrics: MetricSet) -> None:
        metrics[metric_name].set(float(rows[0]["cntr_value"]))
    collect.__name__ = f"collect_{metric_name}"
    return collect


def collect_database_state(rows: Rows, metrics: MetricSet) -> None:
    for row in rows:
        metrics["mssql_database_state"].labels(database=row["name"]).set(float(row["state"]))


def collect_log_growths(rows: Rows, metrics: MetricSet) -> None:
    for row in rows:
        metrics["mssql_log_growths"].labels(database=row["database_name"]).set(float(row["cntr_value"]))


def collect_transactions(rows: Rows, metrics: MetricSet) -> None:
    for row in rows:
        metrics["mssql_transactions"].labels(database=row["database_name"]).set(float(row["cntr_value"]))


def collect_os_process_memory(rows: Rows, metrics: MetricSet) -> None:
    row = rows[0]
    metrics["mssql_page_fault_count"].set(float(row["page_fault_count"]))
    metrics["mssql_memory_utilization_percentage"].set(float(row["memory_utilization_percentage"]))


def collect_os_sys_memory(rows: Rows, metrics: MetricSet) -> None:
    row = rows[0]
    metrics["mssql_total_physical_memory_kb"].set(float(row["total_physical_memory_kb"]))
    metrics["mssql_available_physical_memory_kb"].set(float(row["available_physical_memory_kb"]))
    metrics["mssql_total_page_file_kb"].set(float(row["total_page_file_kb"]))
    metrics["mssql_available_page_file_kb"].set(float(row["available_page_file_kb"]))


def collect_database_filesize(rows: Rows, metrics: MetricSet) -> None:
    for row in rows:
        metrics["mssql_database_filesize"].labels(
            database=row["database_name"],
            logicalname=row["logical_name"],
            type=str(row["type"]),
            filename=row["physical_name"],
        ).set(float(row["size_kb"]))


def collect_io_stall(rows: Rows, metrics: MetricSet) -> None:
    stall = metrics["mssql_io_stall"]
    for row in rows:
        database = row["database_name"]
        stall.labels(database=database, type="read").set(float(row["read_ms"]))
        stall.labels(database=database, type="write").set(float(row["write_ms"]))
        stall.labels(database=database, type="queued_read").set(float(row["queued_read_ms"]))
        stall.labels(database=database, type="queued_write").set(float(row["queued_write_ms"]))
        metrics["mssql_io_stall_total"].labels(database=database).set(float(row["total_ms"]))


def build_collectors(registry: CollectorRegistry) -> Dict[str, Collector]:
    """
    Create the default collectors and their metrics on ``registry``.

    ``mssql_up`` is always first; the scrape handler also uses its gauge as
    the down indicator.

    Args:
        registry: prometheus_client registry receiving every metric

    Returns:
        Dict[str, Collector]: Ordered registry keyed by collector name
    """
    def g(name, documentation, labels=()):
        return {name: _gauge(registry, name, documentation, labels)}

    collectors = [
        Collector(
            name="mssql_up",
            query="SELECT 1 AS up",
            collect=collect_up,
            metrics=g(UP_METRIC, "UP Status"),
        ),
        Collector(
            name="mssql_product_version",
            query="SELECT CONVERT(VARCHAR(128), SERVERPROPERTY('ProductVersion')) AS product_version",
            collect=collect_product_version,
            metrics=g("mssql_product_version", "Instance version (Major.Minor)", ["product_version"]),
        ),
        Collector(
            name="mssql_instance_local_time",
            query="SELECT DATEDIFF(second, '19700101', GETUTCDATE()) AS epoch",
            collect=collect_instance_local_time,
            metrics=g("mssql_instance_local_time", "Number of seconds since epoch on local instance"),
        ),
        Collector(
            name="mssql_connections",
            query=(
                "SELECT DB_NAME(sP.dbid) AS database_name, COUNT(sP.spid) AS connections "
                "FROM sys.sysprocesses sP GROUP BY DB_NAME(sP.dbid)"
            ),
            collect=collect_connections,
            metrics=g("mssql_connections", "Number of active connections", ["database", "state"]),
        ),
        Collector(
            name="mssql_client_connections",
            query=(
                "SELECT host_name, DB_NAME(dbid) AS database_name, COUNT(*) AS session_count "
                "FROM sys.dm_exec_sessions a "
                "LEFT JOIN sys.sysprocesses b ON a.session_id = b.spid "
                "WHERE is_user_process = 1 GROUP BY host_name, dbid"
            ),
            collect=collect_client_connections,
            metrics=g("mssql_client_connections", "Number of active client connections", ["client", "database"]),
        ),
        Collector(
            name="mssql_deadlocks",
            query=_perf_counter_query("Number of Deadlocks/sec", "_Total"),
            collect=_single_counter("mssql_deadlocks"),
            metrics=g("mssql_deadlocks", "Number of lock requests that resulted in a deadlock since last restart"),
        ),
        Collector(
            name="mssql_user_errors",
            query=_perf_counter_query("Errors/sec", "User Errors"),
            collect=_single_counter("mssql_user_errors"),
            metrics=g("mssql_user_errors", "Number of user errors since last restart"),
        ),
        Collector(
            name="mssql_kill_connection_errors",
            query=_perf_counter_query("Errors/sec", "Kill Connection Errors"),
            collect=_single_counter("mssql_kill_connection_errors"),
            metrics=g("mssql_kill_connection_errors", "Number of kill connection errors since last restart"),
        ),
        Collector(
            name="mssql_database_state",
            query="SELECT name, state FROM master.sys.databases",
            collect=collect_database_state,
            metrics=g(
                "mssql_database_state",
                "Databases states: 0=ONLINE 1=RESTORING 2=RECOVERING 3=RECOVERY_PENDING "
                "4=SUSPECT 5=EMERGENCY 6=OFFLINE 7=COPYING 10=OFFLINE_SECONDARY",
                ["database"],
            ),
        ),
        Collector(
            name="mssql_log_growths",
            query=(
                "SELECT RTRIM(instance_name) AS database_name, cntr_value "
                "FROM sys.dm_os_performance_counters "
                "WHERE counter_name = 'Log Growths' AND instance_name <> '_Total'"
            ),
            collect=collect_log_growths,
            metrics=g("mssql_log_growths", "Total number of times the transaction log has been expanded", ["database"]),
        ),
        Collector(
            name="mssql_page_life_expectancy",
            query=(
                "SELECT TOP 1 cntr_value FROM sys.dm_os_performance_counters "
                "WHERE counter_name = 'Page life expectancy' AND object_name LIKE '%Buffer Manager%'"
            ),
            collect=_single_counter("mssql_page_life_expectancy"),
            metrics=g(
                "mssql_page_life_expectancy",
                "Number of seconds a page will stay in the buffer pool without references",
            ),
        ),
        Collector(
            name="mssql_batch_requests",
            query=(
                "SELECT TOP 1 cntr_value FROM sys.dm_os_performance_counters "
                "WHERE counter_name = 'Batch Requests/sec'"
            ),
            collect=_single_counter("mssql_batch_requests"),
            metrics=g("mssql_batch_requests", "Number of Transact-SQL command batches received since last restart"),
        ),
        Collector(
            name="mssql_transactions",
            query=(
                "SELECT RTRIM(instance_name) AS database_name, cntr_value "
                "FROM sys.dm_os_performance_counters "
                "WHERE counter_name = 'Transactions/sec' AND instance_name <> '_Total'"
            ),
            collect=collect_transactions,
            metrics=g("mssql_transactions", "Number of transactions started for the database since last restart", ["database"]),
        ),
        Collector(
            name="mssql_os_process_memory",
            query="SELECT page_fault_count, memory_utilization_percentage FROM sys.dm_os_process_memory",
            collect=collect_os_process_memory,
            metrics={
                **g("mssql_page_fault_count", "Number of page faults since last restart"),
                **g("mssql_memory_utilization_percentage", "Percentage of memory utilization"),
            },
        ),
        Collector(
            name="mssql_os_sys_memory",
            query=(
                "SELECT total_physical_memory_kb, available_physical_memory_kb, "
                "total_page_file_kb, available_page_file_kb FROM sys.dm_os_sys_memory"
            ),
            collect=collect_os_sys_memory,
            metrics={
                **g("mssql_total_physical_memory_kb", "Total physical memory in KB"),
                **g("mssql_available_physical_memory_kb", "Available physical memory in KB"),
                **g("mssql_total_page_file_kb", "Total page file in KB"),
                **g("mssql_available_page_file_kb", "Available page file in KB"),
            },
        ),
        Collector(
            name="mssql_database_filesize",
            query=(
                "SELECT DB_NAME(database_id) AS database_name, name AS logical_name, type, "
                "physical_name, (size * CAST(8 AS BIGINT)) AS size_kb FROM sys.master_files"
            ),
            collect=collect_database_filesize,
            metrics=g(
                "mssql_database_filesize",
                "Physical sizes of files used by database in KB",
                ["database", "logicalname", "type", "filename"],
            ),
            is_async=True,
            timeout=SLOW_QUERY_TIMEOUT,
        ),
        Collector(
            name="mssql_io_stall",
            query=(
                "SELECT CAST(DB_NAME(a.database_id) AS VARCHAR(128)) AS database_name, "
                "MAX(io_stall_read_ms) AS read_ms, MAX(io_stall_write_ms) AS write_ms, "
                "MAX(io_stall) AS total_ms, MAX(io_stall_queued_read_ms) AS queued_read_ms, "
                "MAX(io_stall_queued_write_ms) AS queued_write_ms "
                "FROM sys.dm_io_virtual_file_stats(NULL, NULL) a "
                "INNER JOIN sys.master_files b ON a.database_id = b.database_id AND a.file_id = b.file_id "
                "GROUP BY a.database_id"
            ),
            collect=collect_io_stall,
            metrics={
                **g("mssql_io_stall", "Wait time (ms) of stall since last restart", ["database", "type"]),
                **g("mssql_io_stall_total", "Wait time (ms) of stall since last restart", ["database"]),
            },
            is_async=True,
            timeout=SLOW_QUERY_TIMEOUT,
        ),
    ]

    return register_collectors(collectors)
