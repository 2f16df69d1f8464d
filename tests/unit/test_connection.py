"""
Connection — Unit Tests
========================

Operation routing through the connection surface over fake backends.
"""

import pytest

from conftest import VM1, VM1_INACTIVE, decline, fail, make_backends, ok
from xenunified.core.collaborators import DomainConfigCodec
from xenunified.core.domain import CharDevice, ConsoleDevices, VcpuInfo, VcpuState
from xenunified.core.exceptions import (
    ArgumentUnsupportedError,
    InvalidArgumentError,
    MigrationPersistError,
    NoDomainError,
    OperationFailedError,
    OperationInvalidError,
    UnsupportedOperationError,
)
from xenunified.core.types import (
    MAX_NATIVE_CONFIG_SIZE,
    XEND_CONFIG_VERSION_3_0_2,
    BackendSlot,
    DeviceModifyFlag,
    DriverFeature,
    MigrationFlag,
    VcpuFlag,
)
from xenunified.infra.runtime.backends import Capability, DaemonHandshake, OperationResult

HV = BackendSlot.HYPERVISOR
XEND = BackendSlot.XEND
STORE = BackendSlot.XENSTORE
XM = BackendSlot.XM

def _vcpu(number, usable):
    return VcpuInfo(number, VcpuState.RUNNING, 0, min(usable), frozenset(usable))

class FakeCodec(DomainConfigCodec):
    def __init__(self, xm_output="name = 'vm1'\n", domid=3):
        self.xm_output = xm_output
        self.domid = domid
        self.sxpr_args = None

    def parse_xm(self, config, config_version, capabilities):
        return ("xm", config)

    def domain_id_from_sxpr(self, config, config_version):
        return self.domid

    def parse_sxpr(self, config, config_version, console_path, vnc_port):
        self.sxpr_args = (console_path, vnc_port)
        return ("sxpr", config)

    def parse_definition(self, document, capabilities, options):
        return ("def", document)

    def format_definition(self, definition):
        return f"<domain source='{definition[0]}'/>"

    def format_xm(self, definition, config_version):
        return self.xm_output

    def format_sxpr(self, definition, config_version):
        return "(domain (name vm1))"

class TestConnectionSurface:
    def test_static_properties(self, open_connection):
        conn = open_connection(make_backends())
        assert conn.get_type() == "Xen"
        assert conn.supports_feature(DriverFeature.MIGRATION_V1)
        assert not conn.supports_feature(DriverFeature.MIGRATION_P2P)
        assert not conn.is_encrypted()
        assert conn.is_alive()
        assert conn.is_secure()

    def test_tcp_daemon_is_not_secure(self, open_connection):
        backends = make_backends()
        backends[XEND].open_result = OperationResult.success(
            DaemonHandshake(3, unix_socket=False)
        )
        assert not open_connection(backends).is_secure()

    def test_get_max_vcpus_rejects_foreign_type(self, open_connection):
        backends = make_backends()
        backends[HV].on(Capability.GET_MAX_VCPUS, ok(128))
        conn = open_connection(backends)

        assert conn.get_max_vcpus("xen") == 128
        with pytest.raises(InvalidArgumentError):
            conn.get_max_vcpus("kvm")

    @pytest.mark.parametrize(("cells", "expected"), [([4096], 4096), ([1, 2], 0), ([], 0)])
    def test_node_free_memory(self, open_connection, cells, expected):
        backends = make_backends()
        backends[HV].on(Capability.NODE_GET_CELLS_FREE_MEMORY, ok(cells))
        conn = open_connection(backends)

        assert conn.node_get_free_memory() == expected
        assert backends[HV].called(Capability.NODE_GET_CELLS_FREE_MEMORY) == [(-1, 1)]

    def test_defined_domains_fall_through(self, open_connection):
        backends = make_backends()
        backends[HV].on(Capability.NUM_OF_DEFINED_DOMAINS, decline())
        backends[XEND].on(Capability.NUM_OF_DEFINED_DOMAINS, ok(4))
        assert open_connection(backends).num_of_defined_domains() == 4

    def test_closed_connection_rejects_operations(self, open_connection):
        conn = open_connection(make_backends())
        conn.close()
        assert conn.closed
        with pytest.raises(OperationInvalidError):
            conn.lookup_by_id(3)

    def test_capabilities_cached_at_open(self, open_connection):
        backends = make_backends()
        conn = open_connection(backends)
        conn.get_capabilities()
        conn.get_capabilities()
        assert len(backends[HV].called(Capability.MAKE_CAPABILITIES)) == 1

class TestLookup:
    def test_lookup_by_id_uses_hypervisor(self, open_connection):
        backends = make_backends()
        backends[HV].on(Capability.DOMAIN_LOOKUP_BY_ID, ok(VM1))
        backends[XEND].on(Capability.DOMAIN_LOOKUP_BY_ID, ok(VM1_INACTIVE))

        assert open_connection(backends).lookup_by_id(3) == VM1
        assert backends[XEND].called(Capability.DOMAIN_LOOKUP_BY_ID) == []

    def test_lookup_by_uuid_falls_back_to_daemon(self, open_connection):
        backends = make_backends()
        backends[HV].on(Capability.DOMAIN_LOOKUP_BY_UUID, ok(None))
        backends[XEND].on(Capability.DOMAIN_LOOKUP_BY_UUID, ok(VM1_INACTIVE))

        assert open_connection(backends).lookup_by_uuid(VM1.uuid) == VM1_INACTIVE

    def test_lookup_by_name_consults_xm_on_legacy_daemon(self, open_connection):
        backends = make_backends(XEND_CONFIG_VERSION_3_0_2)
        backends[XEND].on(Capability.DOMAIN_LOOKUP_BY_NAME, decline())
        backends[XM].on(Capability.DOMAIN_LOOKUP_BY_NAME, ok(VM1_INACTIVE))

        assert open_connection(backends).lookup_by_name("vm1") == VM1_INACTIVE

    def test_empty_daemon_answer_falls_through_to_xm(self, open_connection):
        backends = make_backends(XEND_CONFIG_VERSION_3_0_2)
        backends[XEND].on(Capability.DOMAIN_LOOKUP_BY_NAME, ok(None))
        backends[XM].on(Capability.DOMAIN_LOOKUP_BY_NAME, ok(VM1_INACTIVE))

        assert open_connection(backends).lookup_by_name("vm1") == VM1_INACTIVE

    def test_inactive_domain_found_after_empty_hypervisor_answer(self, open_connection):
        backends = make_backends()
        backends[HV].on(Capability.DOMAIN_LOOKUP_BY_UUID, ok(None))
        backends[XEND].on(Capability.DOMAIN_LOOKUP_BY_UUID, ok(VM1_INACTIVE))

        assert not open_connection(backends).is_active(VM1)

    def test_lookup_by_name_skips_xm_on_current_daemon(self, open_connection):
        backends = make_backends()
        backends[XEND].on(Capability.DOMAIN_LOOKUP_BY_NAME, decline())
        backends[XM].on(Capability.DOMAIN_LOOKUP_BY_NAME, ok(VM1_INACTIVE))

        with pytest.raises(NoDomainError):
            open_connection(backends).lookup_by_name("vm1")
        assert backends[XM].called(Capability.DOMAIN_LOOKUP_BY_NAME) == []

    def test_hard_lookup_failure_is_not_reported_as_missing(self, open_connection):
        backends = make_backends()
        backends[XEND].on(Capability.DOMAIN_LOOKUP_BY_NAME, fail("daemon unreachable"))

        with pytest.raises(OperationFailedError) as exc_info:
            open_connection(backends).lookup_by_name("vm1")
        assert not isinstance(exc_info.value, NoDomainError)

    def test_is_active_re_resolves_identity(self, open_connection):
        backends = make_backends()
        backends[HV].on(Capability.DOMAIN_LOOKUP_BY_UUID, decline())
        backends[XEND].on(Capability.DOMAIN_LOOKUP_BY_UUID, ok(VM1_INACTIVE))

        # a stale running handle still reports the current state
        assert not open_connection(backends).is_active(VM1)

    def test_is_persistent_checks_daemon_config_dir(self, open_connection, settings):
        backends = make_backends()
        backends[XEND].on(Capability.DOMAIN_LOOKUP_BY_UUID, ok(VM1))
        conn = open_connection(backends)

        assert not conn.is_persistent(VM1)
        (settings.xend_domains_dir / str(VM1.uuid)).mkdir(parents=True)
        assert conn.is_persistent(VM1)

    def test_inactive_domain_is_persistent(self, open_connection):
        backends = make_backends()
        backends[XEND].on(Capability.DOMAIN_LOOKUP_BY_UUID, ok(VM1_INACTIVE))
        assert open_connection(backends).is_persistent(VM1_INACTIVE)

    def test_is_persistent_asks_xm_when_active(self, open_connection):
        backends = make_backends(XEND_CONFIG_VERSION_3_0_2)
        backends[XM].on(Capability.DOMAIN_LOOKUP_BY_UUID, decline())
        assert not open_connection(backends).is_persistent(VM1)

class TestOwnedOperations:
    """Daemon-owned operations never fall back to another backend."""

    def test_failure_stops_at_owner(self, open_connection):
        backends = make_backends()
        backends[HV].on(Capability.DOMAIN_SUSPEND, ok())
        backends[XEND].on(Capability.DOMAIN_SUSPEND, fail("xend refused"))

        with pytest.raises(OperationFailedError) as exc_info:
            open_connection(backends).suspend(VM1)

        assert exc_info.value.backend == "xend"
        assert backends[HV].called(Capability.DOMAIN_SUSPEND) == []

    def test_owner_without_handler_is_unsupported(self, open_connection):
        backends = make_backends()
        backends[HV].on(Capability.DOMAIN_DESTROY, ok())

        with pytest.raises(UnsupportedOperationError):
            open_connection(backends).destroy(VM1)
        assert backends[HV].called(Capability.DOMAIN_DESTROY) == []

    def test_unknown_flags_rejected_before_dispatch(self, open_connection):
        backends = make_backends()
        backends[XEND].on(Capability.DOMAIN_SHUTDOWN, ok())

        with pytest.raises(InvalidArgumentError):
            open_connection(backends).shutdown(VM1, flags=1)
        assert backends[XEND].called(Capability.DOMAIN_SHUTDOWN) == []

    @pytest.mark.parametrize("operation", ["save", "restore"])
    def test_save_restore_reject_modified_xml(self, open_connection, operation):
        conn = open_connection(make_backends())
        args = (VM1, "/tmp/vm1.img") if operation == "save" else ("/tmp/vm1.img",)
        with pytest.raises(ArgumentUnsupportedError):
            getattr(conn, operation)(*args, dxml="<domain/>")

    def test_core_dump_passes_flags(self, open_connection):
        backends = make_backends()
        backends[XEND].on(Capability.DOMAIN_CORE_DUMP, ok())
        open_connection(backends).core_dump(VM1, "/tmp/core", flags=2)
        assert backends[XEND].called(Capability.DOMAIN_CORE_DUMP) == [(VM1, "/tmp/core", 2)]

class TestManagedSave:
    def test_save_targets_image_path(self, open_connection, settings):
        backends = make_backends()
        backends[XEND].on(Capability.DOMAIN_SAVE, ok())
        open_connection(backends).managed_save(VM1)

        expected = str(settings.save_dir / "vm1.save")
        assert backends[XEND].called(Capability.DOMAIN_SAVE) == [(VM1, expected)]

    def test_has_image_reflects_filesystem(self, open_connection, settings):
        conn = open_connection(make_backends())
        assert not conn.has_managed_save_image(VM1)
        (settings.save_dir / "vm1.save").write_bytes(b"image")
        assert conn.has_managed_save_image(VM1)

    def test_remove_missing_image_fails(self, open_connection):
        with pytest.raises(OperationFailedError):
            open_connection(make_backends()).managed_save_remove(VM1)

    def test_create_restores_and_deletes_image(self, open_connection, settings):
        backends = make_backends()
        backends[XEND].on(Capability.DOMAIN_RESTORE, ok())
        backends[XEND].on(Capability.DOMAIN_CREATE, ok())
        conn = open_connection(backends)
        image = settings.save_dir / "vm1.save"
        image.write_bytes(b"image")

        conn.create(VM1_INACTIVE)

        assert backends[XEND].called(Capability.DOMAIN_RESTORE) == [(str(image),)]
        assert backends[XEND].called(Capability.DOMAIN_CREATE) == []
        assert not image.exists()

    def test_create_without_image_boots(self, open_connection):
        backends = make_backends()
        backends[HV].on(Capability.DOMAIN_CREATE, decline())
        backends[XEND].on(Capability.DOMAIN_CREATE, ok())

        open_connection(backends).create(VM1_INACTIVE)
        assert backends[XEND].called(Capability.DOMAIN_CREATE) == [(VM1_INACTIVE,)]

class TestDevices:
    def test_legacy_attach_adds_config_on_current_daemon(self, open_connection):
        backends = make_backends()
        backends[XEND].on(Capability.DOMAIN_ATTACH_DEVICE, ok())
        open_connection(backends).attach_device(VM1, "<disk/>")

        (args,) = backends[XEND].called(Capability.DOMAIN_ATTACH_DEVICE)
        assert args[2] == DeviceModifyFlag.LIVE | DeviceModifyFlag.CONFIG

    def test_legacy_detach_is_live_only_on_old_daemon(self, open_connection):
        backends = make_backends(XEND_CONFIG_VERSION_3_0_2)
        backends[XEND].on(Capability.DOMAIN_DETACH_DEVICE, ok())
        open_connection(backends).detach_device(VM1, "<disk/>")

        (args,) = backends[XEND].called(Capability.DOMAIN_DETACH_DEVICE)
        assert args[2] == DeviceModifyFlag.LIVE

class TestVersionedRouting:
    def test_autostart_goes_to_xm_on_legacy_daemon(self, open_connection):
        backends = make_backends(XEND_CONFIG_VERSION_3_0_2)
        backends[XEND].on(Capability.DOMAIN_GET_AUTOSTART, ok(False))
        backends[XM].on(Capability.DOMAIN_GET_AUTOSTART, ok(True))

        assert open_connection(backends).get_autostart(VM1) is True
        assert backends[XEND].called(Capability.DOMAIN_GET_AUTOSTART) == []

    def test_autostart_owner_without_handler_is_unsupported(self, open_connection):
        backends = make_backends()
        backends[HV].on(Capability.DOMAIN_SET_AUTOSTART, ok())

        with pytest.raises(UnsupportedOperationError):
            open_connection(backends).set_autostart(VM1, True)

    def test_running_domain_info_from_hypervisor(self, open_connection):
        backends = make_backends()
        backends[HV].on(Capability.DOMAIN_GET_INFO, ok("hv-info"))
        backends[XEND].on(Capability.DOMAIN_GET_INFO, ok("xend-info"))
        conn = open_connection(backends)

        assert conn.get_info(VM1) == "hv-info"
        assert conn.get_info(VM1_INACTIVE) == "xend-info"

    def test_inactive_os_type_unavailable_on_legacy_daemon(self, open_connection):
        backends = make_backends(XEND_CONFIG_VERSION_3_0_2)
        backends[XM].on(Capability.DOMAIN_GET_OS_TYPE, ok("linux"))

        with pytest.raises(OperationFailedError):
            open_connection(backends).get_os_type(VM1_INACTIVE)

    def test_set_memory_inactive_legacy_goes_to_xm(self, open_connection):
        backends = make_backends(XEND_CONFIG_VERSION_3_0_2)
        backends[XEND].on(Capability.DOMAIN_SET_MEMORY, ok())
        backends[XM].on(Capability.DOMAIN_SET_MEMORY, ok())
        conn = open_connection(backends)

        conn.set_memory(VM1_INACTIVE, 524288)
        conn.set_memory(VM1, 524288)

        assert backends[XM].called(Capability.DOMAIN_SET_MEMORY) == [(VM1_INACTIVE, 524288)]
        assert backends[XEND].called(Capability.DOMAIN_SET_MEMORY) == [(VM1, 524288)]

    def test_memory_must_be_positive(self, open_connection):
        with pytest.raises(InvalidArgumentError):
            open_connection(make_backends()).set_max_memory(VM1, 0)

class TestVcpus:
    @pytest.mark.parametrize(
        ("flags", "nvcpus"),
        [
            (0, 2),
            (VcpuFlag.MAXIMUM, 2),
            (VcpuFlag.LIVE | VcpuFlag.MAXIMUM, 2),
            (VcpuFlag.CONFIG | 8, 2),
            (VcpuFlag.CONFIG, 0),
            (VcpuFlag.CONFIG, 0x10000),
        ],
    )
    def test_illegal_requests_reach_no_backend(self, open_connection, flags, nvcpus):
        backends = make_backends()
        backends[HV].on(Capability.DOMAIN_SET_VCPUS, ok())
        backends[XEND].on(Capability.DOMAIN_SET_VCPUS_FLAGS, ok())

        with pytest.raises(InvalidArgumentError):
            open_connection(backends).set_vcpus_flags(VM1, nvcpus, flags)

        assert backends[HV].calls == [(Capability.MAKE_CAPABILITIES, ())]
        assert backends[XEND].called(Capability.DOMAIN_SET_VCPUS_FLAGS) == []

    def test_live_only_falls_back_to_hypervisor(self, open_connection):
        backends = make_backends()
        backends[HV].on(Capability.DOMAIN_SET_VCPUS, ok())
        backends[XEND].on(Capability.DOMAIN_SET_VCPUS_FLAGS, decline())

        open_connection(backends).set_vcpus_flags(VM1, 2, VcpuFlag.LIVE)
        assert backends[HV].called(Capability.DOMAIN_SET_VCPUS) == [(VM1, 2)]

    def test_config_change_has_no_hypervisor_fallback(self, open_connection):
        backends = make_backends()
        backends[HV].on(Capability.DOMAIN_SET_VCPUS, ok())
        backends[XEND].on(Capability.DOMAIN_SET_VCPUS_FLAGS, decline())

        with pytest.raises(UnsupportedOperationError):
            open_connection(backends).set_vcpus_flags(VM1, 2, VcpuFlag.CONFIG)
        assert backends[HV].called(Capability.DOMAIN_SET_VCPUS) == []

    def test_daemon_failure_is_final(self, open_connection):
        backends = make_backends(XEND_CONFIG_VERSION_3_0_2)
        backends[XEND].on(Capability.DOMAIN_SET_VCPUS_FLAGS, fail("refused"))
        backends[XM].on(Capability.DOMAIN_SET_VCPUS_FLAGS, ok())
        backends[HV].on(Capability.DOMAIN_SET_VCPUS, ok())

        with pytest.raises(OperationFailedError):
            open_connection(backends).set_vcpus_flags(VM1, 2, VcpuFlag.LIVE)
        assert backends[XM].called(Capability.DOMAIN_SET_VCPUS_FLAGS) == []
        assert backends[HV].called(Capability.DOMAIN_SET_VCPUS) == []

    def test_set_vcpus_flags_by_daemon_version(self, open_connection):
        backends = make_backends()
        backends[XEND].on(Capability.DOMAIN_SET_VCPUS_FLAGS, ok())
        open_connection(backends).set_vcpus(VM1, 4)

        (args,) = backends[XEND].called(Capability.DOMAIN_SET_VCPUS_FLAGS)
        assert args == (VM1, 4, VcpuFlag.LIVE | VcpuFlag.CONFIG)

    def test_persistent_maximum_from_hypervisor(self, open_connection):
        backends = make_backends()
        backends[XEND].on(Capability.DOMAIN_GET_VCPUS_FLAGS, decline())
        backends[HV].on(Capability.DOMAIN_GET_VCPU_MAX, ok(16))
        conn = open_connection(backends)

        assert conn.get_vcpus_flags(VM1, VcpuFlag.CONFIG | VcpuFlag.MAXIMUM) == 16
        with pytest.raises(UnsupportedOperationError):
            conn.get_vcpus_flags(VM1, VcpuFlag.LIVE)

    def test_get_vcpus_skips_empty_answers(self, open_connection):
        vcpus = [_vcpu(0, {0})]
        backends = make_backends()
        backends[HV].on(Capability.DOMAIN_GET_VCPUS, ok([]))
        backends[XEND].on(Capability.DOMAIN_GET_VCPUS, ok(vcpus))

        assert open_connection(backends).get_vcpus(VM1) == vcpus

    def test_pin_vcpu_validates_cpu_map(self, open_connection):
        backends = make_backends()
        backends[HV].on(Capability.DOMAIN_PIN_VCPU, ok())
        conn = open_connection(backends)

        with pytest.raises(InvalidArgumentError):
            conn.pin_vcpu(VM1, 0, [])
        conn.pin_vcpu(VM1, 1, [2, 3])
        assert backends[HV].called(Capability.DOMAIN_PIN_VCPU) == [(VM1, 1, frozenset({2, 3}))]

class TestXmlDescription:
    def _backends(self, vcpus, max_vcpus=2):
        backends = make_backends()
        backends[HV].on(Capability.DOMAIN_GET_VCPUS, ok(vcpus))
        backends[XEND].on(Capability.DOMAIN_GET_VCPUS_FLAGS, ok(max_vcpus))
        backends[XEND].on(Capability.DOMAIN_GET_XML_DESC, ok("<domain/>"))
        return backends

    def test_running_domain_passes_used_cpus(self, open_connection):
        backends = self._backends([_vcpu(0, {0, 1}), _vcpu(1, {3, 9})])
        assert open_connection(backends).get_xml_desc(VM1) == "<domain/>"
        assert backends[XEND].called(Capability.DOMAIN_GET_XML_DESC) == [(VM1, 0, "0-1,3")]

    def test_every_cpu_used_means_no_restriction(self, open_connection):
        backends = self._backends([_vcpu(0, set(range(8)))])
        assert open_connection(backends).used_cpus(VM1) is None

    def test_unknown_vcpu_count_means_no_restriction(self, open_connection):
        backends = self._backends([_vcpu(0, {0})], max_vcpus=0)
        assert open_connection(backends).used_cpus(VM1) is None

    def test_inactive_legacy_domain_from_xm(self, open_connection):
        backends = make_backends(XEND_CONFIG_VERSION_3_0_2)
        backends[XM].on(Capability.DOMAIN_GET_XML_DESC, ok("<xm/>"))
        backends[XEND].on(Capability.DOMAIN_GET_XML_DESC, ok("<xend/>"))

        assert open_connection(backends).get_xml_desc(VM1_INACTIVE) == "<xm/>"
        assert backends[XM].called(Capability.DOMAIN_GET_XML_DESC) == [(VM1_INACTIVE, 0, None)]

class TestScheduler:
    def test_setter_consults_hypervisor_last(self, open_connection):
        order = []

        def record(name):
            def handler(*args):
                order.append(name)
                return OperationResult.decline()

            return handler

        backends = make_backends()
        backends[HV].on(Capability.DOMAIN_SET_SCHEDULER_PARAMETERS, record("hypervisor"))
        backends[XEND].on(Capability.DOMAIN_SET_SCHEDULER_PARAMETERS, record("xend"))

        with pytest.raises(UnsupportedOperationError):
            open_connection(backends).set_scheduler_parameters(VM1, {"weight": 256})
        assert order == ["xend", "hypervisor"]

    def test_getter_first_success_wins(self, open_connection):
        backends = make_backends()
        backends[HV].on(Capability.DOMAIN_GET_SCHEDULER_PARAMETERS, ok({"weight": 256}))
        backends[XEND].on(Capability.DOMAIN_GET_SCHEDULER_PARAMETERS, ok({"weight": 1}))

        assert open_connection(backends).get_scheduler_parameters(VM1) == {"weight": 256}

class TestConsole:
    def _conn(self, open_connection, devices):
        backends = make_backends()
        backends[XEND].on(Capability.DOMAIN_GET_CONSOLES, ok(devices))
        return open_connection(backends)

    def test_console_pty_path(self, open_connection):
        devices = ConsoleDevices(consoles=(CharDevice("pty", "/dev/pts/4"),))
        assert self._conn(open_connection, devices).open_console(VM1) == "/dev/pts/4"

    def test_serial_used_without_console(self, open_connection):
        devices = ConsoleDevices(serials=(CharDevice("pty", "/dev/pts/7"),))
        assert self._conn(open_connection, devices).open_console(VM1) == "/dev/pts/7"

    def test_non_pty_console_fails(self, open_connection):
        devices = ConsoleDevices(consoles=(CharDevice("file", "/var/log/vm1"),))
        with pytest.raises(OperationFailedError):
            self._conn(open_connection, devices).open_console(VM1)

    def test_no_console_device_fails(self, open_connection):
        with pytest.raises(OperationFailedError):
            self._conn(open_connection, ConsoleDevices()).open_console(VM1)

    def test_inactive_domain_rejected(self, open_connection):
        with pytest.raises(OperationInvalidError):
            self._conn(open_connection, ConsoleDevices()).open_console(VM1_INACTIVE)

    def test_named_device_unsupported(self, open_connection):
        with pytest.raises(ArgumentUnsupportedError):
            self._conn(open_connection, ConsoleDevices()).open_console(VM1, "serial0")

class TestNativeConversion:
    def test_unknown_format_rejected(self, open_connection):
        conn = open_connection(make_backends(), codec=FakeCodec())
        with pytest.raises(InvalidArgumentError):
            conn.domain_xml_from_native("xen-xl", "name = 'vm1'")

    def test_missing_codec_is_unsupported(self, open_connection):
        with pytest.raises(UnsupportedOperationError):
            open_connection(make_backends()).domain_xml_to_native("xen-xm", "<domain/>")

    def test_from_xm(self, open_connection):
        conn = open_connection(make_backends(), codec=FakeCodec())
        assert conn.domain_xml_from_native("xen-xm", "name = 'vm1'") == "<domain source='xm'/>"

    def test_from_sxpr_reads_console_from_store(self, open_connection):
        codec = FakeCodec(domid=3)
        backends = make_backends()
        backends[STORE].on(Capability.DOMAIN_GET_CONSOLE_PATH, ok("/dev/pts/2"))
        backends[STORE].on(Capability.DOMAIN_GET_VNC_PORT, decline())
        conn = open_connection(backends, codec=codec)

        assert conn.domain_xml_from_native("xen-sxpr", "(domain)") == "<domain source='sxpr'/>"
        assert codec.sxpr_args == ("/dev/pts/2", -1)
        assert backends[STORE].called(Capability.DOMAIN_GET_CONSOLE_PATH) == [(3,)]

    def test_to_sxpr(self, open_connection):
        conn = open_connection(make_backends(), codec=FakeCodec())
        assert conn.domain_xml_to_native("xen-sxpr", "<domain/>") == "(domain (name vm1))"

    def test_oversized_xm_output_fails(self, open_connection):
        codec = FakeCodec(xm_output="x" * (MAX_NATIVE_CONFIG_SIZE + 1))
        conn = open_connection(make_backends(), codec=codec)
        with pytest.raises(OperationFailedError):
            conn.domain_xml_to_native("xen-xm", "<domain/>")

class TestMigration:
    def _backends(self):
        backends = make_backends()
        backends[XEND].on(Capability.DOMAIN_LOOKUP_BY_NAME, ok(VM1))
        return backends

    def test_unsupported_flag_rejected(self, open_connection):
        backends = self._backends()
        backends[XEND].on(Capability.DOMAIN_MIGRATE_PREPARE, ok())

        with pytest.raises(InvalidArgumentError):
            open_connection(backends).migrate_prepare(None, MigrationFlag.PEER2PEER)
        assert backends[XEND].called(Capability.DOMAIN_MIGRATE_PREPARE) == []

    def test_finish_without_persist_only_looks_up(self, open_connection):
        backends = self._backends()
        backends[XEND].on(Capability.DOMAIN_GET_XML_DESC, ok("<domain/>"))

        assert open_connection(backends).migrate_finish("vm1") == VM1
        assert backends[XEND].called(Capability.DOMAIN_GET_XML_DESC) == []

    def test_finish_persists_definition(self, open_connection):
        backends = self._backends()
        backends[XEND].on(Capability.DOMAIN_GET_XML_DESC, ok("<domain name='vm1'/>"))
        backends[XEND].on(Capability.DOMAIN_DEFINE_XML, ok(VM1))

        conn = open_connection(backends)
        assert conn.migrate_finish("vm1", flags=MigrationFlag.PERSIST_DEST) == VM1
        assert backends[XEND].called(Capability.DOMAIN_DEFINE_XML) == [("<domain name='vm1'/>",)]

    @pytest.mark.parametrize("failing", [Capability.DOMAIN_GET_XML_DESC, Capability.DOMAIN_DEFINE_XML])
    def test_persist_failure(self, open_connection, failing):
        backends = self._backends()
        backends[XEND].on(Capability.DOMAIN_GET_XML_DESC, ok("<domain/>"))
        backends[XEND].on(Capability.DOMAIN_DEFINE_XML, ok(VM1))
        backends[XEND].on(failing, fail("daemon error"))

        with pytest.raises(MigrationPersistError):
            open_connection(backends).migrate_finish("vm1", flags=MigrationFlag.PERSIST_DEST)

class TestEventRegistration:
    def test_requires_store_watch(self, open_connection):
        conn = open_connection(make_backends(watch=None))
        with pytest.raises(UnsupportedOperationError):
            conn.domain_event_register(lambda event, opaque: None)

    def test_register_and_deregister(self, open_connection):
        conn = open_connection(make_backends())

        def callback(event, opaque):
            pass

        conn.domain_event_register(callback)
        assert conn.domain_event_deregister(callback) == 0
