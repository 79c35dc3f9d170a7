# Copyright: (c) 2024, Jordan Borean (@jborean93) <jborean93@gmail.com>
# MIT License (see LICENSE or https://opensource.org/licenses/MIT)

from __future__ import annotations

import json
import typing as t

from ._types import InvokeCommandParams

FILE_HASH_ALGORITHMS = frozenset(["SHA1", "SHA256", "SHA384", "SHA512", "MD5"])


def _quote(value: str) -> str:
    return "'%s'" % value.replace("'", "''")


def ps_value_to_arg(
    value: t.Any,
) -> str:
    """Render a JSON like value as a PowerShell literal.

    Args:
        value: The value to render, None, bool, int, float, str, a list or a
            dict with str keys.

    Returns:
        str: The PowerShell literal that represents the value.
    """
    if value is None:
        return "$null"

    elif isinstance(value, bool):
        return "$true" if value else "$false"

    elif isinstance(value, (int, float)):
        return str(value)

    elif isinstance(value, str):
        return _quote(value)

    elif isinstance(value, (list, tuple)):
        return "@(%s)" % ", ".join(ps_value_to_arg(v) for v in value)

    elif isinstance(value, dict):
        entries = "; ".join(f"{_quote(str(k))} = {ps_value_to_arg(v)}" for k, v in value.items())
        return "@{%s}" % entries

    raise TypeError(f"Cannot convert value of type {type(value).__name__} to a PowerShell literal")


def build_script(
    params: InvokeCommandParams,
) -> str:
    """Build the script text for an invocation.

    Only one execution unit is used, a file path is dot sourced in a script
    block, otherwise a command name is called directly, otherwise the
    script_block is wrapped in a script block. Named parameters are added
    before positional arguments. When input objects are set they are sent as
    JSON and piped into the script.

    Args:
        params: The invocation parameters.

    Returns:
        str: The script to run on the remote host.
    """
    if params.file_path:
        script = f"& {{ . {_quote(params.file_path)} "
    elif params.command_name:
        script = f"{params.command_name} "
    else:
        script = f"& {{ {params.script_block} "

    for key, value in params.parameters.items():
        script += f"-{key} {ps_value_to_arg(value)} "

    for arg in params.argument_list:
        script += f"{ps_value_to_arg(arg)} "

    if params.file_path or not params.command_name:
        script += "}"

    if params.input_object:
        input_json = json.dumps(params.input_object, separators=(",", ":"))
        script = f"({_quote(input_json)} | ConvertFrom-Json) | ForEach-Object {{ $_ }} | {script}"

    return script


class ScriptTemplates:
    """Pre-built scripts for common management tasks.

    Every script converts its result to JSON so the output can be consumed
    without CLIXML.
    """

    @staticmethod
    def get_process(name: t.Optional[str] = None) -> str:
        if name:
            return f"Get-Process -Name {_quote(name)} | ConvertTo-Json -Depth 3"
        return "Get-Process | ConvertTo-Json -Depth 3"

    @staticmethod
    def get_service(name: t.Optional[str] = None) -> str:
        select = "Select-Object Name, Status, DisplayName, StartType | ConvertTo-Json -Depth 3"
        if name:
            return f"Get-Service -Name {_quote(name)} | {select}"
        return f"Get-Service | {select}"

    @staticmethod
    def get_system_info() -> str:
        return """@{
    ComputerName = $env:COMPUTERNAME
    OSVersion = [System.Environment]::OSVersion.VersionString
    PSVersion = $PSVersionTable.PSVersion.ToString()
    CLRVersion = $PSVersionTable.CLRVersion?.ToString()
    Architecture = [System.Runtime.InteropServices.RuntimeInformation]::OSArchitecture.ToString()
    TotalMemoryMB = [math]::Round((Get-CimInstance Win32_ComputerSystem).TotalPhysicalMemory / 1MB, 2)
    Uptime = (Get-Uptime).ToString()
    CurrentUser = [System.Security.Principal.WindowsIdentity]::GetCurrent().Name
    Domain = [System.Net.Dns]::GetHostEntry('').HostName
    IPAddresses = (Get-NetIPAddress -AddressFamily IPv4 | Where-Object { $_.IPAddress -ne '127.0.0.1' }).IPAddress
} | ConvertTo-Json -Depth 3"""

    @staticmethod
    def get_event_log(log_name: str, count: int) -> str:
        return (
            f"Get-WinEvent -LogName {_quote(log_name)} -MaxEvents {int(count)} | "
            "Select-Object TimeCreated, Id, LevelDisplayName, Message | ConvertTo-Json -Depth 3"
        )

    @staticmethod
    def restart_service(name: str) -> str:
        return f"Restart-Service -Name {_quote(name)} -Force -PassThru | Select-Object Name, Status | ConvertTo-Json"

    @staticmethod
    def get_disk_info() -> str:
        return (
            "Get-CimInstance Win32_LogicalDisk | Select-Object DeviceID, DriveType, "
            "@{N='SizeGB';E={[math]::Round($_.Size/1GB,2)}}, "
            "@{N='FreeGB';E={[math]::Round($_.FreeSpace/1GB,2)}}, "
            "@{N='PercentFree';E={[math]::Round($_.FreeSpace/$_.Size*100,1)}} | ConvertTo-Json -Depth 3"
        )

    @staticmethod
    def get_installed_software() -> str:
        return (
            "Get-ItemProperty HKLM:\\Software\\Microsoft\\Windows\\CurrentVersion\\Uninstall\\* | "
            "Select-Object DisplayName, DisplayVersion, Publisher, InstallDate | "
            "Where-Object { $_.DisplayName } | Sort-Object DisplayName | ConvertTo-Json -Depth 3"
        )

    @staticmethod
    def get_file_hash(path: str, algorithm: str = "SHA256") -> str:
        algorithm = algorithm.upper()
        if algorithm not in FILE_HASH_ALGORITHMS:
            raise ValueError(f"Unsupported file hash algorithm '{algorithm}'")

        return f"Get-FileHash -Path {_quote(path)} -Algorithm {algorithm} | ConvertTo-Json"

    @staticmethod
    def get_update_history(count: int) -> str:
        return (
            f"Get-HotFix | Sort-Object InstalledOn -Descending | Select-Object -First {int(count)} | "
            "ConvertTo-Json -Depth 3"
        )

    @staticmethod
    def test_connection(target: str, count: int = 4) -> str:
        return f"Test-Connection -ComputerName {_quote(target)} -Count {int(count)} | ConvertTo-Json -Depth 3"

    @staticmethod
    def get_firewall_rules(enabled_only: bool = False) -> str:
        if enabled_only:
            return (
                "Get-NetFirewallRule -Enabled True | Select-Object Name, DisplayName, Direction, Action, Profile | "
                "ConvertTo-Json -Depth 3"
            )
        return (
            "Get-NetFirewallRule | Select-Object Name, DisplayName, Direction, Action, Profile, Enabled | "
            "ConvertTo-Json -Depth 3"
        )

    @staticmethod
    def get_scheduled_tasks() -> str:
        return (
            "Get-ScheduledTask | Where-Object { $_.State -ne 'Disabled' } | Select-Object TaskName, TaskPath, State, "
            "@{N='NextRun';E={(Get-ScheduledTaskInfo $_.TaskName -ErrorAction SilentlyContinue).NextRunTime}} | "
            "ConvertTo-Json -Depth 3"
        )

    @staticmethod
    def get_local_users() -> str:
        return (
            "Get-LocalUser | Select-Object Name, Enabled, LastLogon, PasswordRequired, UserMayChangePassword, "
            "Description | ConvertTo-Json -Depth 3"
        )

    @staticmethod
    def get_local_group_members(group: str) -> str:
        return (
            f"Get-LocalGroupMember -Group {_quote(group)} | Select-Object Name, ObjectClass, PrincipalSource | "
            "ConvertTo-Json -Depth 3"
        )
