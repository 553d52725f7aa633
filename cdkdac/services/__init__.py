"""RPC endpoint logic for the datacom, status and sync namespaces."""