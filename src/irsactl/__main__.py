import irsactl.cli

if __name__ == "__main__":
    irsactl.cli.main()
