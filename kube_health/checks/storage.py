"""Persistent storage health check: classes, volumes, claims, snapshots and CSI."""

import re
import sys
from collections import defaultdict

from kube_health import resources
from kube_health.checks.base import Report, run_provider
from kube_health.kubectl import Kubectl

DEFAULT_CLASS_ANNOTATION = "storageclass.kubernetes.io/is-default-class"
STORAGE_EVENT_RE = re.compile(r"Volume|Storage|Mount|Attach|Provision")
UNUSED_PVC_RECOMMENDATION_THRESHOLD = 10

# Checked in order, first match wins
PROVISIONER_TYPES = (
    (("aws",), "AWS EBS"),
    (("gce", "gke"), "Google Persistent Disk"),
    (("azure",), "Azure Disk"),
    (("csi",), "CSI Driver"),
    (("nfs",), "NFS"),
    (("ceph", "rbd"), "Ceph/RBD"),
    (("longhorn",), "Longhorn"),
    (("local",), "Local Storage"),
)


def provisioner_type(provisioner: str) -> str:
    for needles, label in PROVISIONER_TYPES:
        if any(needle in provisioner for needle in needles):
            return label
    return "Other"


def is_default_class(storage_class: dict) -> bool:
    return resources.annotations(storage_class).get(DEFAULT_CLASS_ANNOTATION) == "true"


def claims_in_use(pods: list) -> set:
    """(namespace, claim name) pairs mounted by any pod."""
    used = set()
    for pod in pods:
        for volume in pod.get("spec", {}).get("volumes", []) or []:
            claim = (volume.get("persistentVolumeClaim") or {}).get("claimName")
            if claim:
                used.add((resources.namespace(pod), claim))
    return used


def check_storage(report: Report, kubectl: Kubectl):
    report.section("Storage Classes Overview")
    classes = kubectl.get_items("storageclasses") or []
    if not classes:
        report.fail("No storage classes found")
        report.recommend("CRITICAL: No storage classes found - dynamic provisioning unavailable")
    for sc in classes:
        provisioner = sc.get("provisioner", "")
        report.line(report.palette.blue(resources.name(sc)))
        if is_default_class(sc):
            report.ok("Default storage class")
        report.detail(f"Provisioner: {provisioner} ({provisioner_type(provisioner)})")
        report.detail(f"Reclaim Policy: {sc.get('reclaimPolicy', 'Delete')}")
        report.detail(f"Binding Mode: {sc.get('volumeBindingMode', 'Immediate')}")
        report.detail(f"Volume Expansion: {'Allowed' if sc.get('allowVolumeExpansion') else 'Not allowed'}")
    defaults = sum(1 for sc in classes if is_default_class(sc))
    if classes and defaults == 0:
        report.warn("No default storage class set")
        report.recommend("Set a default storage class for easier PVC creation")
    elif defaults > 1:
        report.warn(f"Multiple default storage classes found ({defaults})")
        report.recommend("Keep exactly one default storage class")

    report.section("Persistent Volumes Analysis")
    pvs = kubectl.get_items("pv") or []
    phases = resources.count_by(pvs, lambda pv: pv.get("status", {}).get("phase", "Unknown"))
    report.line(f"Total PVs: {len(pvs)}")
    for phase, count in sorted(phases.items()):
        report.detail(f"{phase}: {count}")
    released = phases.get("Released", 0)
    if phases.get("Failed"):
        report.fail(f"{phases['Failed']} PVs in Failed state")
    if released:
        report.warn(f"{released} PVs in Released state")
        report.recommend(f"Clean up {released} released PVs to free resources")
    capacity_by_class = defaultdict(float)
    for pv in pvs:
        storage_class = pv.get("spec", {}).get("storageClassName") or "<none>"
        try:
            capacity_by_class[storage_class] += resources.parse_quantity(
                pv.get("spec", {}).get("capacity", {}).get("storage"))
        except ValueError:
            pass
    if capacity_by_class:
        report.line("Capacity by storage class:")
        for storage_class, size in sorted(capacity_by_class.items()):
            report.detail(f"{storage_class}: {resources.format_bytes(size)}")

    report.section("Persistent Volume Claims Analysis")
    pvcs = kubectl.get_items("pvc", all_namespaces=True) or []
    pvc_phases = resources.count_by(pvcs, lambda pvc: pvc.get("status", {}).get("phase", "Unknown"))
    report.line(f"Total PVCs: {len(pvcs)}")
    for phase, count in sorted(pvc_phases.items()):
        report.detail(f"{phase}: {count}")
    report.line("Top namespaces by PVC count:")
    for ns, count in resources.count_by(pvcs, resources.namespace).most_common(5):
        report.detail(f"{ns}: {count}")

    pending = [p for p in pvcs if p.get("status", {}).get("phase") == "Pending"]
    events = kubectl.get_items("events", all_namespaces=True) or []
    if pending:
        report.warn(f"{len(pending)} pending PVCs")
        report.recommend(f"Investigate {len(pending)} pending PVCs")
        for pvc in pending[:10]:
            related = [
                e for e in events
                if e.get("involvedObject", {}).get("name") == resources.name(pvc)
                and e.get("involvedObject", {}).get("namespace") == resources.namespace(pvc)
            ]
            last = resources.recent_events(related, 1)
            message = (last[0].get("message") or "").strip() if last else "No events"
            report.detail(f"{resources.qualified_name(pvc)}: {message}")
    else:
        report.ok("No pending PVCs")

    pods = kubectl.get_items("pods", all_namespaces=True) or []
    used = claims_in_use(pods)
    unused = [p for p in pvcs if (resources.namespace(p), resources.name(p)) not in used]
    report.line(f"Used PVCs: {len(pvcs) - len(unused)}")
    report.line(f"Unused PVCs: {len(unused)}")
    if unused:
        report.warn("Consider reviewing unused PVCs for cleanup")
    if len(unused) > UNUSED_PVC_RECOMMENDATION_THRESHOLD:
        report.recommend(f"Review {len(unused)} unused PVCs for potential cleanup")

    report.section("Volume Snapshot Analysis")
    api_resources = kubectl.output(["api-resources", "-o", "name"]) or ""
    if "volumesnapshots" in api_resources:
        snapshots = kubectl.get_items("volumesnapshots", all_namespaces=True) or []
        ready = sum(1 for s in snapshots if s.get("status", {}).get("readyToUse"))
        report.ok(f"VolumeSnapshot API available ({len(snapshots)} snapshots, {ready} ready)")
        snapshot_classes = kubectl.get_items("volumesnapshotclasses") or []
        report.detail(f"Snapshot classes: {len(snapshot_classes)}")
    else:
        report.warn("VolumeSnapshot CRDs not installed")
        report.recommend("Install VolumeSnapshot CRDs for backup capabilities")

    report.section("CSI Drivers and Plugins")
    drivers = kubectl.get_items("csidrivers") or []
    if drivers:
        report.ok(f"{len(drivers)} CSI driver(s) installed")
        for driver in drivers:
            modes = ", ".join(driver.get("spec", {}).get("volumeLifecycleModes", []) or ["Persistent"])
            report.detail(f"{resources.name(driver)} ({modes})")
    else:
        report.info("No CSI drivers found")
        report.recommend("Consider migrating to CSI drivers for better storage features")
    csi_nodes = kubectl.get_items("csinodes") or []
    if csi_nodes:
        report.detail(f"CSI nodes: {len(csi_nodes)}")

    report.section("Storage Capacity Tracking")
    capacities = kubectl.get_items("csistoragecapacities", all_namespaces=True)
    if capacities:
        report.ok(f"{len(capacities)} CSIStorageCapacity objects published")
    else:
        report.info("Storage capacity tracking not in use")

    report.section("Volume Health Monitoring")
    attachments = kubectl.get_items("volumeattachments") or []
    if attachments:
        attached = sum(1 for a in attachments if a.get("status", {}).get("attached"))
        report.line(f"Volume Attachments: {len(attachments)} ({attached} attached)")
        errors = [a for a in attachments if a.get("status", {}).get("attachError")]
        if errors:
            report.fail(f"Attachment errors: {len(errors)}")
            for attachment in errors[:5]:
                report.detail(f"{resources.name(attachment)}: {attachment['status']['attachError'].get('message', '')}")
        else:
            report.ok("No volume attachment errors")
    else:
        report.info("No volume attachments")

    report.section("Storage Performance Indicators")
    storage_events = [e for e in events if STORAGE_EVENT_RE.search(e.get("reason") or "")]
    storage_warnings = [e for e in storage_events if resources.is_warning_event(e)]
    if storage_warnings:
        report.warn(f"Found {len(storage_warnings)} storage warning events")
        for event in resources.recent_events(storage_warnings, 10):
            report.detail(resources.event_summary(event)[:200])
    else:
        report.ok("No storage warning events")

    report.add_summary("Storage classes", len(classes))
    report.add_summary("Persistent volumes", len(pvs))
    report.add_summary("PVCs", f"{pvc_phases.get('Bound', 0)}/{len(pvcs)} bound")
    if unused:
        report.add_summary("Unused PVCs", len(unused))
    return None


def main() -> int:
    return run_provider("Storage Health Check", check_storage)


if __name__ == "__main__":
    sys.exit(main())
