"""Known CloudWatch metric names per monitored service."""

from typing import Dict, FrozenSet, List


ELB_NAMESPACE = "AWS/ApplicationELB"
ELASTICACHE_NAMESPACE = "AWS/ElastiCache"
RDS_NAMESPACE = "AWS/RDS"

ELB_METRICS = [
    "ActiveConnectionCount",
    "NewConnectionCount",
    "RejectedConnectionCount",
    "ClientTLSNegotiationErrorCount",
    "RequestCount",
    "TargetResponseTime",
    "HTTPCode_ELB_3XX_Count",
    "HTTPCode_ELB_4XX_Count",
    "HTTPCode_ELB_5XX_Count",
    "HTTPCode_ELB_502_Count",
    "HTTPCode_ELB_503_Count",
    "HTTPCode_ELB_504_Count",
    "HTTPCode_Target_2XX_Count",
    "HTTPCode_Target_3XX_Count",
    "HTTPCode_Target_4XX_Count",
    "HTTPCode_Target_5XX_Count",
    "TargetConnectionErrorCount",
    "TargetTLSNegotiationErrorCount",
    "HealthyHostCount",
    "UnHealthyHostCount",
    "ProcessedBytes",
    "ConsumedLCUs",
    "RuleEvaluations",
    "DroppedInvalidHeaderRequestCount",
    "ForwardedInvalidHeaderRequestCount",
    "DesyncMitigationMode_NonCompliant_Request_Count",
]

ELASTICACHE_METRICS = [
    "CPUUtilization",
    "EngineCPUUtilization",
    "DatabaseMemoryUsagePercentage",
    "BytesUsedForCache",
    "FreeableMemory",
    "SwapUsage",
    "CurrConnections",
    "NewConnections",
    "CurrItems",
    "Evictions",
    "Reclaimed",
    "CacheHits",
    "CacheMisses",
    "CacheHitRate",
    "GetTypeCmds",
    "SetTypeCmds",
    "KeyBasedCmds",
    "StringBasedCmds",
    "HashBasedCmds",
    "ListBasedCmds",
    "SetBasedCmds",
    "SortedSetBasedCmds",
    "NetworkBytesIn",
    "NetworkBytesOut",
    "NetworkPacketsIn",
    "NetworkPacketsOut",
    "ReplicationLag",
    "ReplicationBytes",
    "IsMaster",
    "SaveInProgress",
    "MasterLinkHealthStatus",
]

RDS_METRICS = [
    "CPUUtilization",
    "CPUCreditBalance",
    "CPUCreditUsage",
    "DatabaseConnections",
    "FreeableMemory",
    "FreeStorageSpace",
    "SwapUsage",
    "ReadIOPS",
    "WriteIOPS",
    "ReadLatency",
    "WriteLatency",
    "ReadThroughput",
    "WriteThroughput",
    "DiskQueueDepth",
    "NetworkReceiveThroughput",
    "NetworkTransmitThroughput",
    "BinLogDiskUsage",
    "ReplicaLag",
    "TransactionLogsDiskUsage",
    "OldestReplicationSlotLag",
    "MaximumUsedTransactionIDs",
    "BurstBalance",
    "EBSIOBalance%",
    "EBSByteBalance%",
    "DBLoad",
    "DBLoadCPU",
    "DBLoadNonCPU",
]

CATALOGS: Dict[str, List[str]] = {
    "elb": ELB_METRICS,
    "elasticache": ELASTICACHE_METRICS,
    "rds": RDS_METRICS,
}

DESCRIPTIONS: Dict[str, str] = {
    "elb": "Application Load Balancer",
    "elasticache": "ElastiCache (Redis)",
    "rds": "Relational Database Service",
}

# Dimension sets identifying one resource per namespace. Series published
# under other sets (per AZ, per target group, per cache node, per engine)
# would map to the same instance_id and are not fetched.
IDENTITY_DIMENSIONS: Dict[str, List[FrozenSet[str]]] = {
    ELB_NAMESPACE: [frozenset({"LoadBalancer"})],
    "AWS/ELB": [frozenset({"LoadBalancerName"})],
    ELASTICACHE_NAMESPACE: [frozenset({"CacheClusterId"})],
    RDS_NAMESPACE: [frozenset({"DBInstanceIdentifier"}), frozenset({"DBClusterIdentifier"})],
}
