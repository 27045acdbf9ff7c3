import shlex

from awgctl_core.config import PROTOCOLS


class ConfigStore:
    """Config document, key files and runtime state of one protocol backend."""

    def __init__(self, channel, protocol):
        proto = PROTOCOLS[protocol]
        self.channel = channel
        self.protocol = protocol
        self.interface = proto["interface"]
        self.tool = proto["tool"]
        self.quick_tool = proto["quick_tool"]
        self.paths = proto["paths"]

    def read_file(self, path):
        return self.channel.run(f"cat {shlex.quote(path)} 2>/dev/null || true").stdout

    def write_file(self, path, content):
        self.channel.run(f"cat > {shlex.quote(path)}", input=content)

    def read_config(self):
        return self.read_file(self.paths["wg_conf"])

    def write_config(self, content):
        self.write_file(self.paths["wg_conf"], content)

    def read_psk(self):
        return self.read_file(self.paths["psk"]).strip()

    def read_server_public_key(self):
        return self.read_file(self.paths["server_public_key"]).strip()

    def dump(self):
        if not self.interface:
            return ""
        return self.channel.run(f"{self.tool} show {self.interface} dump").stdout

    def sync(self):
        if not self.interface:
            return
        conf = shlex.quote(self.paths["wg_conf"])
        tmp = f"/tmp/{self.interface}.stripped.conf"
        self.channel.run(
            f"{self.quick_tool} strip {conf} > {tmp} && "
            f"{self.tool} syncconf {self.interface} {tmp}; "
            f"rc=$?; rm -f {tmp}; exit $rc"
        )

    def generate_keypair(self):
        private_key = self.channel.run(f"{self.tool} genkey").stdout.strip()
        public_key = self.channel.run(f"{self.tool} pubkey", input=private_key + "\n").stdout.strip()
        return private_key, public_key
