import re
import uuid

from botocore.exceptions import ClientError

from gamehost.aws.ami import resolve_image
from gamehost.aws.assets import upload_artifact
from gamehost.aws.cloudwatch import make_activity_probe
from gamehost.aws.ec2 import (
    STARTUP_HASH_TAG,
    describe_instance,
    get_instance_state,
    get_instance_tags,
    launch_instance,
    stop_instance,
    terminate_instance,
    wait_for_instance_running,
    wait_for_instance_terminated,
)
from gamehost.aws.eip import allocate_eip, associate_eip, disassociate_eip, get_eip, release_eip
from gamehost.aws.functions import delete_activation_function, ensure_activation_function
from gamehost.aws.iam import (
    delete_role,
    ensure_activation_role,
    ensure_instance_role,
    get_account_id,
    grant_artifacts,
    grant_save_store,
)
from gamehost.aws.s3 import SaveStore, bucket_name_for, create_bucket, delete_bucket, resolve_save_store
from gamehost.aws.security_groups import build_security_policy, delete_security_group, ensure_security_group
from gamehost.aws.vpc import NetworkContext, resolve_network
from gamehost.config import Default, DeploymentConfig, Explicit
from gamehost.control.activation import ActivationGateway, ActivationResult
from gamehost.control.lifecycle import PLATFORM_STATE_MAP, IdleMonitor, PowerState, PowerStateMachine
from gamehost.control.startup import build_startup_sequence, render_user_data, startup_fingerprint
from gamehost.control.state import DeploymentRecord, DeploymentState
from gamehost.errors import is_client_error


def _slug(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug[:30] or "gamehost"


def _game_port(config: DeploymentConfig) -> int:
    """Port the auto-shutdown service watches for player traffic."""
    for rule in config.ports:
        if rule.name == "game":
            return rule.port
    udp = [r for r in config.ports if r.protocol == "udp"]
    if udp:
        return udp[0].port
    return config.ports[0].port if config.ports else 7777


class Provisioner:
    EC2_STATE_MAP = {
        "pending": "starting",
        "running": "running",
        "stopping": "stopped",
        "stopped": "stopped",
    }

    def __init__(self, state_dir=None, on_status=None, debug=False, on_debug=None):
        kwargs = {}
        if state_dir is not None:
            kwargs["state_dir"] = state_dir
        self.state = DeploymentState(**kwargs)
        self.on_status = on_status
        self.debug = debug
        self.on_debug = on_debug

    def _notify(self, message: str) -> None:
        if self.on_status:
            self.on_status(message)

    def _debug_callback(self, message: str) -> None:
        if self.debug and self.on_debug:
            self.on_debug(message)

    def _find_by_name(self, name: str) -> DeploymentRecord | None:
        for record in self.state.list_all():
            if record.name == name:
                return record
        return None

    def _require(self, name_or_id: str) -> DeploymentRecord:
        record = self.state.get_by_name_or_id(name_or_id)
        if not record:
            raise ValueError(f"Deployment {name_or_id} not found")
        return record

    def deploy(self, config: DeploymentConfig) -> DeploymentRecord:
        """Resolve, provision and wire a game server deployment.

        Re-running with the same name converges the existing deployment. The
        instance is replaced only if its first-boot script or launch shape changed.
        """
        existing = self._find_by_name(config.name)
        deployment_id = existing.id if existing else uuid.uuid4().hex[:12]
        prefix = _slug(config.name)
        region = config.region

        # Resolution happens before anything is created.
        self._notify("Resolving network")
        network = resolve_network(region, config.placement)
        self._debug_callback(f"vpc={network.vpc_id} subnet={network.subnet_id} az={network.availability_zone}")

        self._notify("Resolving machine image")
        ami_id = resolve_image(region, config.image)
        self._debug_callback(f"ami={ami_id}")

        policy = build_security_policy(config.ports)

        store_hint = config.save_store.name
        if isinstance(store_hint, Default) and existing and existing.save_store:
            # Same deployment: keep using the bucket it created earlier.
            store_hint = Explicit(existing.save_store)
        self._notify("Resolving save store")
        store = resolve_save_store(
            region, store_hint, prefix, deployment_id,
            transition_after_days=config.save_store.transition_after_days,
            allow_public_access=config.save_store.allow_public_access,
        )
        if existing and store.name == existing.save_store and existing.save_store_owned:
            store = SaveStore(
                name=store.name, owned=True, versioned=store.versioned,
                transition_after_days=store.transition_after_days,
            )
        self._debug_callback(f"save store={store.name} owned={store.owned}")

        self._notify("Configuring security group")
        sg_id = ensure_security_group(region, prefix, network.vpc_id, policy, deployment_id)

        self._notify("Configuring instance role")
        role_name, profile_arn = ensure_instance_role(prefix, deployment_id)
        grant_save_store(role_name, store.name)

        artifact_bucket = existing.artifact_bucket if existing else ""
        if not artifact_bucket:
            artifact_bucket = bucket_name_for(prefix, "assets")
            create_bucket(region, artifact_bucket, tags={"gamehost:id": deployment_id})

        self._notify("Uploading startup artifacts")
        install = upload_artifact(region, artifact_bucket, config.startup.install_script)
        auto_shutdown = upload_artifact(region, artifact_bucket, config.startup.auto_shutdown_script)
        sequence = build_startup_sequence(
            save_store=store.name,
            use_experimental_build=config.use_experimental_build,
            install_artifact=install,
            auto_shutdown_artifact=auto_shutdown,
            install_cloud_cli=config.startup.install_aws_cli,
            idle_minutes=config.idle.threshold_minutes,
            grace_minutes=config.idle.grace_minutes,
            game_port=_game_port(config),
        )
        grant_artifacts(role_name, artifact_bucket, [a.key for a in sequence.artifacts()])
        user_data = render_user_data(sequence)
        startup_hash = startup_fingerprint(user_data)

        instance_id, allocation_id, public_ip = self.provision_compute(
            config, deployment_id, prefix, network, sg_id, profile_arn,
            ami_id, user_data, startup_hash, existing,
        )
        ec2_state = get_instance_state(region, instance_id)
        status = self.EC2_STATE_MAP.get(ec2_state, ec2_state)

        activation_role_arn = activation_function = activation_url = ""
        if config.activation.enabled:
            self._notify("Configuring activation role")
            activation_role_arn = ensure_activation_role(
                prefix, deployment_id, region, get_account_id(region), instance_id,
            )
            self._notify("Deploying activation function")
            activation_function, activation_url = ensure_activation_function(
                region, prefix, deployment_id, activation_role_arn, instance_id,
                timeout_seconds=config.activation.timeout_seconds,
            )
            self._debug_callback(f"activation url={activation_url}")
        elif existing:
            self._remove_activation(existing)

        record = DeploymentRecord(
            id=deployment_id, name=config.name, game=config.game, region=region,
            instance_id=instance_id, vpc_id=network.vpc_id, subnet_id=network.subnet_id,
            security_group_id=sg_id, save_store=store.name, save_store_owned=store.owned,
            artifact_bucket=artifact_bucket, role_name=role_name, status=status,
            eip_allocation_id=allocation_id, public_ip=public_ip, startup_hash=startup_hash,
            activation_enabled=config.activation.enabled,
            activation_role_arn=activation_role_arn,
            activation_function_name=activation_function,
            activation_url=activation_url,
            activation_timeout_seconds=config.activation.timeout_seconds,
            idle_threshold_minutes=config.idle.threshold_minutes,
            idle_grace_minutes=config.idle.grace_minutes,
            created_at=existing.created_at if existing else "",
        )
        self.state.save(record)
        return record

    def provision_compute(
        self, config: DeploymentConfig, deployment_id: str, prefix: str,
        network: NetworkContext, sg_id: str, profile_arn: str, ami_id: str,
        user_data: str, startup_hash: str, existing: DeploymentRecord | None = None,
    ) -> tuple[str, str, str]:
        """Launch (or keep) the instance and pin the Elastic IP to it.

        Returns (instance_id, allocation_id, public_ip).
        """
        region = config.region
        current = describe_instance(region, existing.instance_id) if existing and existing.instance_id else None
        replace_reason = ""
        if current:
            if get_instance_tags(current).get(STARTUP_HASH_TAG) != startup_hash:
                replace_reason = "startup configuration changed"
            elif current.get("InstanceType") != config.instance_type or current.get("ImageId") != ami_id:
                replace_reason = "instance type or image changed"
            elif current.get("SubnetId") != network.subnet_id:
                replace_reason = "placement changed"

        allocation_id = ""
        public_ip = ""
        if existing and existing.eip_allocation_id:
            address = get_eip(region, existing.eip_allocation_id)
            if address:
                allocation_id = existing.eip_allocation_id
                public_ip = address["PublicIp"]

        if current and not replace_reason:
            self._notify("Instance is up to date")
            instance_id = current["InstanceId"]
            new_instance = False
        else:
            if current:
                self._notify(f"Replacing instance ({replace_reason})")
            self._notify("Launching instance")
            instance_id = launch_instance(
                region=region, ami_id=ami_id, instance_type=config.instance_type,
                security_group_id=sg_id, subnet_id=network.subnet_id,
                instance_profile_arn=profile_arn, user_data=user_data,
                storage=config.storage, deployment_id=deployment_id, name=prefix,
                startup_hash=startup_hash,
            )
            new_instance = True

        allocated_here = False
        try:
            if new_instance:
                self._notify("Waiting for instance to start")
                wait_for_instance_running(region, instance_id)
            if not allocation_id:
                self._notify("Allocating Elastic IP")
                allocation_id, public_ip = allocate_eip(region, deployment_id)
                allocated_here = True
            address = get_eip(region, allocation_id)
            if not address or address.get("InstanceId") != instance_id:
                bound_to = address.get("InstanceId") if address else None
                if bound_to and current and bound_to == current["InstanceId"] and not config.allow_eip_reassociation:
                    # Association will not move a bound address; free it from the replaced instance.
                    self._notify("Detaching Elastic IP from replaced instance")
                    disassociate_eip(region, allocation_id)
                self._notify("Associating Elastic IP")
                associate_eip(region, allocation_id, instance_id, config.allow_eip_reassociation)
        except BaseException:
            # Clean up what this run created so we don't leave orphans
            self._notify("Cleaning up after failure")
            if new_instance:
                try:
                    terminate_instance(region, instance_id)
                except Exception:
                    pass
            if allocated_here:
                try:
                    release_eip(region, allocation_id)
                except Exception:
                    pass
            raise

        if current and replace_reason:
            self._notify("Terminating replaced instance")
            terminate_instance(region, current["InstanceId"])
        return instance_id, allocation_id, public_ip

    def refresh(self, name_or_id: str) -> DeploymentRecord:
        """Update the stored status from the instance's actual power state."""
        record = self._require(name_or_id)
        ec2_state = get_instance_state(record.region, record.instance_id)
        status = self.EC2_STATE_MAP.get(ec2_state, ec2_state)
        if status != record.status:
            self.state.update_status(record.id, status)
            record.status = status
        return record

    def machine_for(self, record: DeploymentRecord) -> PowerStateMachine:
        ec2_state = get_instance_state(record.region, record.instance_id)
        return PowerStateMachine(initial=PLATFORM_STATE_MAP.get(ec2_state, PowerState.STOPPED))

    def wake(self, name_or_id: str, target_instance_id: str | None = None) -> ActivationResult:
        """Ask the platform to start the deployment's instance through its activation gateway."""
        record = self._require(name_or_id)
        if not record.activation_enabled:
            raise ValueError(f"Activation is disabled for deployment {record.name}")
        gateway = ActivationGateway(
            instance_id=record.instance_id, region=record.region,
            timeout=record.activation_timeout_seconds, machine=self.machine_for(record),
        )
        self._notify("Requesting start")
        result = gateway.activate(target_instance_id or record.instance_id)
        if result.start_issued:
            self.state.update_status(record.id, "starting")
        return result

    def stop(self, name_or_id: str) -> None:
        record = self._require(name_or_id)
        self._notify("Stopping instance")
        try:
            stop_instance(record.region, record.instance_id)
        except ClientError as e:
            if not is_client_error(e, "IncorrectInstanceState"):
                raise
        self.state.update_status(record.id, "stopped")

    def watch(self, name_or_id: str, interval: float = 60.0, on_transition=None, **run_kwargs) -> None:
        """Run the idle monitor for a deployment until interrupted."""
        record = self._require(name_or_id)
        machine = self.machine_for(record)
        machine.on_transition = on_transition

        def _stop():
            self._notify("Idle grace period elapsed, stopping instance")
            stop_instance(record.region, record.instance_id)
            self.state.update_status(record.id, "stopped")

        monitor = IdleMonitor(
            machine,
            threshold=record.idle_threshold_minutes * 60,
            grace=record.idle_grace_minutes * 60,
            stop_instance=_stop,
        )
        monitor.run(
            activity_probe=make_activity_probe(record.region, record.instance_id),
            interval=interval,
            platform_state=lambda: get_instance_state(record.region, record.instance_id),
            **run_kwargs,
        )

    def _remove_activation(self, record: DeploymentRecord) -> None:
        if record.activation_function_name:
            self._notify("Deleting activation function")
            delete_activation_function(record.region, record.activation_function_name)
        if record.activation_role_arn:
            delete_role(record.activation_role_arn.rsplit("/", 1)[-1])

    def destroy(self, name_or_id: str) -> DeploymentRecord:
        """Tear down everything the deployment owns except the save store and root volume."""
        record = self._require(name_or_id)
        region = record.region

        if record.eip_allocation_id and get_eip(region, record.eip_allocation_id):
            self._notify("Releasing Elastic IP")
            disassociate_eip(region, record.eip_allocation_id)
            release_eip(region, record.eip_allocation_id)

        if describe_instance(region, record.instance_id):
            self._notify("Terminating instance")
            terminate_instance(region, record.instance_id)
            wait_for_instance_terminated(region, record.instance_id)

        self._notify("Deleting security group")
        try:
            delete_security_group(region, record.security_group_id)
        except ClientError as e:
            if not is_client_error(e, "InvalidGroup.NotFound"):
                raise

        self._notify("Deleting roles")
        delete_role(record.role_name, instance_profile=True)
        self._remove_activation(record)

        if record.artifact_bucket:
            self._notify("Deleting artifact bucket")
            try:
                delete_bucket(region, record.artifact_bucket)
            except ClientError as e:
                if not is_client_error(e, "NoSuchBucket"):
                    raise

        self.state.delete(record.id)
        return record
