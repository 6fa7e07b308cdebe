from with_mount.cli.with_mount_cli import run

run()
