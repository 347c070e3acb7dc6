"""
Vim REST Client helper script.

Reads the text filtered from a .rest buffer on stdin and prints it back with
every fold executed.

Example input (variables saved in .env.json):

    ###{
    @baseUrl = "https://10.0.0.20:5443/api/v1"
    ###}

Example output:

    ###{ executed (SUCCESS)
    @baseUrl = "https://10.0.0.20:5443/api/v1"
    ########## RESULT
    @baseUrl = "https://10.0.0.20:5443/api/v1"
    ###}
"""
import asyncio
import sys
from typing import List, Optional

from vimrest.rest_config import load_config
from vimrest.rest_datatypes import ConfigError
from vimrest.rest_logging import configure_logging
from vimrest.rest_runtime import RestRunner

USAGE = """\
Usage of vim-rest-client:
STDIN | vim-rest-client [-h/--help] [file]

\t--help/-h\t\tShow this usage message
\tfile\t\t\tThe name to use as the env file (default .env.json)

Flags:
# @name <name>\t\t\tSaves output from the fold result into the environment under the given name.
# @form <name>=<val>\t\tAdds multi-form data to the request. Equivalent to -F for curl.
# @debug\t\t\tDoes not execute fold but prints the curl command that would have executed.
# @verbose\t\t\tEnables verbose logs.
# @options <flags>\t\tAdds arguments to the argument list for curl.

Special Variables:
sshTo\t\tHost to ssh to and run curl command from
sshConfig\tSSH config file path
sshKey\t\tSSH key file path
sshPort\t\tPort of ssh host"""


def usage() -> None:
    print(USAGE)


async def main(argv: Optional[List[str]] = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    if any(arg in ("-h", "--help") for arg in args):
        usage()
        return 0
    env_file = args[0] if args else None

    try:
        config = load_config(env_file=env_file)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    configure_logging(config.log_level, json_logs=config.json_logs)

    try:
        source = sys.stdin.read()
    except (OSError, UnicodeDecodeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    async with RestRunner(config) as runner:
        result = await runner.handle_document(source)
    if result.status == 'error':
        print(result.format_error(), file=sys.stderr)
        return 1
    print(result.output)
    return 0


def run() -> None:
    try:
        code = asyncio.run(main())
    except KeyboardInterrupt:
        print("\nExiting.", file=sys.stderr)
        code = 130
    raise SystemExit(code)


if __name__ == "__main__":
    run()
