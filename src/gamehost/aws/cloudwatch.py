from datetime import datetime, timedelta, timezone

import boto3


def network_packets_in(region: str, instance_id: str, window_minutes: int = 5) -> float:
    """Sum of NetworkPacketsIn for the instance over the last window."""
    cloudwatch = boto3.client("cloudwatch", region_name=region)
    end = datetime.now(timezone.utc)
    start = end - timedelta(minutes=window_minutes)
    response = cloudwatch.get_metric_statistics(
        Namespace="AWS/EC2",
        MetricName="NetworkPacketsIn",
        Dimensions=[{"Name": "InstanceId", "Value": instance_id}],
        StartTime=start,
        EndTime=end,
        Period=60,
        Statistics=["Sum"],
    )
    return sum(point.get("Sum", 0.0) for point in response.get("Datapoints", []))


def make_activity_probe(region: str, instance_id: str, min_packets: float = 500.0, window_minutes: int = 5):
    """Activity probe for IdleMonitor: players are assumed present above min_packets."""
    def probe() -> bool:
        return network_packets_in(region, instance_id, window_minutes) >= min_packets
    return probe
