from mentra.app.db.init_db import main

if __name__ == "__main__":
    main()
