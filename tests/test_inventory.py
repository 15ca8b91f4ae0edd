import pytest
from unittest.mock import patch

from archwizard.inventory import (
    PARTITION_COLUMNS,
    SystemInventory,
    parse_drive_list,
    parse_free_regions,
    parse_has_bios_boot,
    parse_mountpoints,
    parse_partition_count,
    parse_partition_numbers,
    parse_partitions,
    parse_table_type,
)
from archwizard.models import BIOS_BOOT_GUID, ESP_GUID, TableType
from archwizard.utils.exceptions import CommandNotFoundError, ResourceNotFoundError

# ======= Execute with: pytest tests/test_inventory.py ========

# Captured `lsblk -b -n -r -o NAME,PARTNUM,START,SIZE,FSTYPE,PARTFLAGS,PARTTYPE,PARTLABEL,MOUNTPOINT /dev/nvme0n1`
NVME_PARTITIONS = (
    "nvme0n1        \n"
    f"nvme0n1p1 1 2048 536870912 vfat  {ESP_GUID} EFI\\x20system\\x20partition /boot/efi\n"
    "nvme0n1p2 2 1050624 107374182400 ext4  0fc63daf-8483-4772-8e79-3d69d8477de4  /\n"
)

PARTED_FREE = (
    "BYT;\n"
    "/dev/sda:40960MiB:scsi:512:512:gpt:ATA VBOX HARDDISK:;\n"
    "1:0.02MiB:1.00MiB:0.98MiB:free;\n"
    "1:1.00MiB:513MiB:512MiB:fat32:ESP:boot, esp;\n"
    "2:513MiB:20481MiB:19968MiB:ext4::;\n"
    "1:20481MiB:40960MiB:20479MiB:free;\n"
)

# ----------------------------------------------------------------------
# --- Tests for the output parsers ---
# ----------------------------------------------------------------------

def test_parse_drive_list_keeps_whole_disks_only():
    output = (
        "loop0 73990144 loop\n"
        "sda 42949672960 disk\n"
        "sr0 1073741312 rom\n"
        "zram0 4294967296 disk\n"
        "nvme0n1 512110190592 disk\n"
    )
    assert parse_drive_list(output) == [("sda", 42949672960), ("nvme0n1", 512110190592)]

def test_parse_drive_list_skips_malformed_lines():
    assert parse_drive_list("sda\nsdb notanumber disk\n\n") == []

@pytest.mark.parametrize("output, expected", [
    ("gpt\n", TableType.GPT),
    ("dos\n", TableType.DOS),
    ("\n", TableType.UNKNOWN),
    ("", TableType.UNKNOWN),
])
def test_parse_table_type(output, expected):
    assert parse_table_type(output) is expected

def test_parse_partition_count():
    assert parse_partition_count("disk\npart\npart\npart\n") == 3

def test_parse_has_bios_boot_by_flag_or_guid():
    assert parse_has_bios_boot(" \nbios_grub 21686148-6449-6E6F-744E-656564454649\n")
    assert parse_has_bios_boot(f"\n {BIOS_BOOT_GUID}\n")
    assert not parse_has_bios_boot("\nboot 0x83\n")

def test_parse_partitions_nvme():
    partitions = parse_partitions(NVME_PARTITIONS, "/dev/nvme0n1")

    assert [p.name for p in partitions] == ["nvme0n1p1", "nvme0n1p2"]
    esp, root = partitions
    assert esp.number == 1
    assert esp.start_mib == 1
    assert esp.size_mib == 512
    assert esp.is_esp
    assert esp.label == "EFI system partition"
    assert esp.mountpoint == "/boot/efi"
    assert root.fstype == "ext4"
    assert root.start_mib == 513
    assert root.end_mib == 513 + 102400
    assert root.path == "/dev/nvme0n1p2"

def test_parse_partitions_missing_partnum_falls_back_to_name():
    output = "sdb3  411648 1048576 ext4    \n"
    (partition,) = parse_partitions(output, "sdb")
    assert partition.number == 3

def test_parse_partitions_skips_wrong_column_count():
    assert parse_partitions("sdb1 1 2048\n", "sdb") == []

def test_parse_partition_numbers():
    output = "sdb \nsdb1 1\nsdb2 2\nsdb5 \n"
    assert parse_partition_numbers(output, "/dev/sdb") == {"sdb1": 1, "sdb2": 2, "sdb5": 5}

def test_parse_mountpoints_ignores_swap_and_empty():
    output = "\n/mnt\n[SWAP]\n/mnt/boot\n/media/usb\\x20stick\n"
    assert parse_mountpoints(output) == ["/mnt", "/mnt/boot", "/media/usb stick"]

def test_parse_free_regions():
    regions = parse_free_regions(PARTED_FREE)
    assert [(r.start_mib, r.end_mib, r.size_mib) for r in regions] == [
        (0.02, 1.0, 0.98),
        (20481.0, 40960.0, 20479.0),
    ]

def test_parse_free_regions_tolerates_garbage():
    assert parse_free_regions("Error: /dev/sdz: unrecognised disk label\nfree\n1:x:y:z:free;\n") == []

# ----------------------------------------------------------------------
# --- Tests for SystemInventory queries ---
# ----------------------------------------------------------------------

def test_snapshot_collects_drive_state(fake_system, inventory):
    fake_system.on("lsblk", "-b", "-d", "-n", "-o", "SIZE", stdout="42949672960\n")
    fake_system.on("lsblk", "-d", "-n", "-o", "PTTYPE", stdout="gpt\n")
    fake_system.on("lsblk", "-b", "-n", "-r", "-o", PARTITION_COLUMNS,
                   stdout=f"sda       \nsda1 1 2048 536870912 vfat  {ESP_GUID} ESP \n")
    fake_system.on("parted", "/dev/sda", stdout=PARTED_FREE)

    drive = inventory.snapshot("/dev/sda", with_free_space=True)

    assert drive.name == "sda"
    assert drive.size_mib == 40960
    assert drive.table_type is TableType.GPT
    assert drive.esp.name == "sda1"
    assert len(drive.free_regions) == 2
    free_query = fake_system.calls[-1]
    assert free_query["command"] == ["parted", "/dev/sda", "-m", "unit", "MiB", "print", "free"]
    assert free_query["privileged"] is True

def test_snapshot_without_free_space_skips_parted(fake_system, inventory):
    inventory.snapshot("sda")
    assert fake_system.ran("parted") == []

def test_describe_partitions_is_stable_across_queries(fake_system, inventory):
    fake_system.on("lsblk", "-b", "-n", "-r", "-o", PARTITION_COLUMNS, stdout=NVME_PARTITIONS)
    fake_system.on("lsblk", "-d", "-n", "-o", "PTTYPE", stdout="gpt\n")

    first = inventory.describe_partitions("nvme0n1")
    assert inventory.table_type("nvme0n1") is TableType.GPT
    second = inventory.describe_partitions("nvme0n1")

    assert first
    assert tuple(first) == tuple(second)

def test_failed_query_yields_empty_result(fake_system, inventory, mock_rich_logger):
    fake_system.on("lsblk", exit_code=32, stderr="lsblk: /dev/sdz: not a block device")

    assert inventory.describe_partitions("sdz") == []
    assert inventory.table_type("sdz") is TableType.UNKNOWN
    assert inventory.drive_size_bytes("sdz") == 0
    mock_rich_logger.warning.assert_called()

def test_query_survives_missing_tool(fake_system, inventory):
    fake_system.executor.execute_command.side_effect = CommandNotFoundError("lsblk")
    assert inventory.list_drives() == []

def test_list_drives_with_details(fake_system, inventory):
    fake_system.on("lsblk", "-b", "-d", "-n", "-o", "NAME,SIZE,TYPE", stdout="sda 42949672960 disk\nloop0 1 loop\n")
    fake_system.on("lsblk", "-d", "-n", "-o", "PTTYPE", stdout="dos\n")

    (drive,) = inventory.list_drives()

    assert drive.path == "/dev/sda"
    assert drive.table_type is TableType.DOS

def test_mbr_limit_reached(fake_system, inventory):
    fake_system.on("lsblk", "-d", "-n", "-o", "PTTYPE", stdout="dos\n")
    fake_system.on("lsblk", "-n", "-r", "-o", "TYPE", stdout="disk\npart\npart\npart\npart\n")
    assert inventory.mbr_limit_reached("sda")

def test_mbr_limit_not_reached_on_gpt(fake_system, inventory):
    fake_system.on("lsblk", "-d", "-n", "-o", "PTTYPE", stdout="gpt\n")
    fake_system.on("lsblk", "-n", "-r", "-o", "TYPE", stdout="disk\npart\npart\npart\npart\n")
    assert not inventory.mbr_limit_reached("sda")

def test_has_bios_boot_partition(fake_system, inventory):
    fake_system.on("lsblk", "-n", "-r", "-o", "PARTFLAGS,PARTTYPE", stdout=f" \n {BIOS_BOOT_GUID}\n")
    assert inventory.has_bios_boot_partition("sda")

def test_parent_drive(fake_system, inventory):
    fake_system.on("lsblk", "-n", "-r", "-o", "PKNAME", stdout="nvme0n1\n")
    assert inventory.parent_drive("nvme0n1p2") == "nvme0n1"
    assert fake_system.commands[-1][-1] == "/dev/nvme0n1p2"

def test_mountpoints_deepest_first(fake_system, inventory):
    fake_system.on("lsblk", "-n", "-r", "-o", "MOUNTPOINT", stdout="\n/mnt\n/mnt/boot\n")
    assert inventory.mountpoints("sda") == ["/mnt/boot", "/mnt"]

def test_free_regions_without_parted(fake_system, inventory, mock_rich_logger):
    inventory.locate_parted.side_effect = ResourceNotFoundError("parted", "Partitioning tool not found")
    assert inventory.free_regions("sda") == []
    mock_rich_logger.warning.assert_called_once()

# ----------------------------------------------------------------------
# --- Tests for locating parted and waiting on device nodes ---
# ----------------------------------------------------------------------

@patch("archwizard.inventory.shutil.which", return_value=None)
@patch("archwizard.inventory.os.access", return_value=True)
@patch("archwizard.inventory.os.path.isfile", side_effect=lambda path: path == "/sbin/parted")
def test_locate_parted_fallback(mock_isfile, mock_access, mock_which, fake_system):
    assert SystemInventory(fake_system.executor).locate_parted() == "/sbin/parted"

@patch("archwizard.inventory.shutil.which", return_value=None)
@patch("archwizard.inventory.os.path.isfile", return_value=False)
def test_locate_parted_missing(mock_isfile, mock_which, fake_system):
    with pytest.raises(ResourceNotFoundError, match="Partitioning tool not found"):
        SystemInventory(fake_system.executor).locate_parted()

@patch("archwizard.inventory.time.sleep")
@patch("archwizard.inventory.os.path.exists", side_effect=[False, False, True])
def test_wait_for_partition_node_appears(mock_exists, mock_sleep, inventory):
    assert inventory.wait_for_partition_node("/dev/sda2", timeout_seconds=1.0)
    assert mock_sleep.call_count == 2

@patch("archwizard.inventory.time.sleep")
@patch("archwizard.inventory.os.path.exists", return_value=False)
def test_wait_for_partition_node_times_out(mock_exists, mock_sleep, fake_system, mock_rich_logger):
    inv = SystemInventory(fake_system.executor, device_poll_interval=1.0)
    assert not inv.wait_for_partition_node("/dev/sda2", timeout_seconds=3.0)
    assert mock_exists.call_count == 4
    assert mock_sleep.call_count == 3
    mock_rich_logger.warning.assert_called_once()
